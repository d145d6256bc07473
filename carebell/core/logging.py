import logging
import sys
from logging.config import dictConfig

from carebell.config import settings

CTX_FIELDS = ("update_id", "user_id", "reminder_id")


def setup_logging() -> None:
    """Base logging setup for the whole service."""
    level = settings.log_level.upper()

    if settings.log_json:
        fmt = (
            '{"ts":"%(asctime)s","lvl":"%(levelname)s","name":"%(name)s",'
            '"msg":"%(message)s","update_id":"%(update_id)s",'
            '"user_id":"%(user_id)s","reminder_id":"%(reminder_id)s"}'
        )
    else:
        fmt = (
            "%(asctime)s | %(levelname)5s | %(name)s | %(message)s "
            "| upd=%(update_id)s user=%(user_id)s rem=%(reminder_id)s"
        )

    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": fmt}},
        "filters": {"ctx": {"()": CtxFilter}},
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
                "formatter": "default",
                "filters": ["ctx"],
            }
        },
        "root": {"level": level, "handlers": ["stdout"]},
        "loggers": {
            "sqlalchemy.engine": {"level": settings.log_sql.upper()},
            "aiogram": {"level": settings.log_aiogram.upper()},
            # apscheduler logs every job run at INFO
            "apscheduler": {"level": settings.log_apscheduler.upper()},
            "carebell": {"level": level},
        },
    })


class CtxFilter(logging.Filter):
    """Fills context fields so the formatter never fails on records without extra."""
    def filter(self, record: logging.LogRecord) -> bool:
        for k in CTX_FIELDS:
            if not hasattr(record, k):
                setattr(record, k, "-")
        return True


def attach_ctx_filter() -> None:
    """Attaches the filter to every root handler, including ones added after setup."""
    f = CtxFilter()
    for h in logging.getLogger().handlers:
        h.addFilter(f)
