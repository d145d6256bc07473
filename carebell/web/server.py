# carebell/web/server.py
from __future__ import annotations

import logging
import platform
import socket
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from carebell.container import Container
from carebell.core.errors import CarebellError
from carebell.utils.logging import setup_json_logging
from carebell.web.errors import carebell_error_handler, unhandled_exception_handler, value_error_handler
from carebell.web.middleware_logging import LoggingMiddleware
from carebell.web.routes import router as api_router

log = logging.getLogger("startup")


def _log_startup(container: Container) -> None:
    host = socket.gethostname()
    try:
        ip = socket.gethostbyname(host)
    except OSError:
        ip = "unknown"

    cfg = container.settings
    log.info(
        "app_startup | platform=%s python=%s hostname=%s ip=%s env=%s",
        platform.platform(),
        platform.python_version(),
        host,
        ip,
        {
            "STORE_BACKEND": cfg.STORE_BACKEND,
            "NOTIFY_TRANSPORT": cfg.NOTIFY_TRANSPORT,
            "WEBAPP_HOST": cfg.WEBAPP_HOST,
            "WEBAPP_PORT": cfg.WEBAPP_PORT,
        },
    )


def create_app(container: Container, *, configure_logging: bool = True) -> FastAPI:
    """
    HTTP surface over an already built container. The process that owns the
    container (``carebell.main``) starts and stops the scheduler; the app only
    serves requests.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logging:
            setup_json_logging()
        _log_startup(container)
        yield

    app = FastAPI(title="Carebell", lifespan=lifespan)
    app.state.container = container

    app.add_middleware(LoggingMiddleware)
    app.include_router(api_router)

    app.add_exception_handler(CarebellError, carebell_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def _validation(request, exc: RequestValidationError):
        rid = getattr(request.state, "request_id", "-")
        logging.getLogger("errors").warning(
            "validation_error rid=%s detail=%s", rid, exc.errors()
        )
        return JSONResponse(
            {"ok": False, "error": "validation_error", "detail": jsonable_errors(exc), "rid": rid},
            status_code=422,
        )

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    # pydantic puts the raw exception into ctx for some errors
    out = []
    for e in exc.errors():
        e = dict(e)
        if "ctx" in e:
            e["ctx"] = {k: str(v) for k, v in e["ctx"].items()}
        out.append(e)
    return out


if __name__ == "__main__":
    from carebell.main import run

    run()
