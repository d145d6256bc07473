# carebell/web/errors.py
from __future__ import annotations
import logging
from fastapi import Request
from fastapi.responses import JSONResponse

from carebell.core.errors import CarebellError, InvalidTransition, NotFound

log = logging.getLogger("errors")


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = getattr(request.state, "request_id", "-")
    log.error(
        "unhandled_exception",
        exc_info=exc,
        extra={"rid": rid, "path": request.url.path, "error": str(exc)},
    )
    # no details leak out, the rid ties it to the log line
    return JSONResponse({"ok": False, "error": "internal_error", "rid": rid}, status_code=500)


async def carebell_error_handler(request: Request, exc: CarebellError):
    rid = getattr(request.state, "request_id", "-")
    if isinstance(exc, NotFound):
        code, error = 404, "not_found"
    elif isinstance(exc, InvalidTransition):
        code, error = 409, "invalid_transition"
    else:
        code, error = 409, "conflict"
    log.info("carebell_error", extra={"rid": rid, "path": request.url.path, "error": str(exc)})
    return JSONResponse({"ok": False, "error": error, "detail": str(exc), "rid": rid}, status_code=code)


async def value_error_handler(request: Request, exc: ValueError):
    rid = getattr(request.state, "request_id", "-")
    log.warning("bad_request", extra={"rid": rid, "path": request.url.path, "error": str(exc)})
    return JSONResponse({"ok": False, "error": "bad_request", "detail": str(exc), "rid": rid}, status_code=400)
