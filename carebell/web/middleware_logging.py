# carebell/web/middleware_logging.py
from __future__ import annotations
import logging, time, uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

log = logging.getLogger("http")

SAFE_HEADERS = {"content-type", "user-agent", "x-request-id", "x-real-ip", "x-forwarded-for"}


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex
        start = time.perf_counter()
        path = request.url.path
        client = request.client
        addr = f"{client.host}:{client.port}" if client else "?:?"

        headers = {k.lower(): v for k, v in request.headers.items() if k.lower() in SAFE_HEADERS}
        log.info("http_request", extra={
            "rid": rid, "method": request.method, "path": path,
            "client": addr, "ctype": headers.get("content-type", ""),
        })

        # handlers and error handlers read it from here
        request.state.request_id = rid

        try:
            response: Response = await call_next(request)
        except Exception:
            log.exception("http_error", extra={
                "rid": rid, "path": path, "ms": round((time.perf_counter() - start) * 1000, 2)
            })
            raise

        log.info("http_response", extra={
            "rid": rid, "status": response.status_code,
            "ms": round((time.perf_counter() - start) * 1000, 2), "path": path,
        })
        response.headers["x-request-id"] = rid
        return response
