import logging
import sys
import uuid
from contextvars import ContextVar

from gritsync.core.config import settings

# set per request by RequestIdMiddleware; "-" outside a request (startup, tests)
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s request_id=%(request_id)s %(name)s: %(message)s"

# these log every outbound HTTP call at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "stripe")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get()
        return True


def configure_logging(level: str | int | None = None) -> None:
    if level is None:
        level = settings.LOG_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT))
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def new_request_id() -> str:
    return uuid.uuid4().hex[:16]
