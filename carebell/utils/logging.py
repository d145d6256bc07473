# carebell/utils/logging.py
from __future__ import annotations
import logging
import sys

from pythonjsonlogger import jsonlogger

from carebell.config import settings
from carebell.utils.dates import now_utc


def setup_json_logging():
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    json_mode = settings.log_json
    root = logging.getLogger()
    root.setLevel(level)

    # uvicorn likes to attach its own handlers
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)

    if json_mode:
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            json_ensure_ascii=False
        )
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
    handler.setFormatter(formatter)
    root.addHandler(handler)

    logging.getLogger("uvicorn").setLevel(level)
    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("apscheduler").setLevel(settings.log_apscheduler.upper())

    logging.getLogger(__name__).info("logging_ready", extra={
        "json": json_mode, "level": logging.getLevelName(level),
        "ts": now_utc().isoformat()
    })
