"""
Logging setup for Order Buddy.

create_app() calls setup_logging() once for a real server (tests skip it,
so pytest keeps its own handlers). Every logger is a child of "orderbuddy",
so one root configuration covers them all.

Production (Railway, or LOG_JSON=true) logs one JSON object per line;
local runs get short colored lines. Either way a JSON copy rotates under
DATA_DIR/logs/orderbuddy.log.
"""
import os
import json
import logging
import logging.handlers
from datetime import datetime, timezone

from flask import g, has_request_context, request

from order_buddy.core.paths import LOG_DIR

LOG_FILE = "orderbuddy.log"
NOISY_LOGGERS = ("urllib3", "werkzeug", "requests")

# Attributes the routes pass via extra={...}
EXTRA_FIELDS = ("route", "method", "status", "duration_ms", "owner",
                "order_id", "action", "count")


class RequestContextFilter(logging.Filter):
    """Stamp owner/route on records logged while a request is in flight."""

    def filter(self, record):
        if has_request_context():
            if not hasattr(record, "owner"):
                record.owner = getattr(g, "owner", None)
            if not hasattr(record, "route"):
                record.route = request.path
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        payload.update({k: getattr(record, k) for k in EXTRA_FIELDS
                        if getattr(record, k, None) is not None})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}


class HumanFormatter(logging.Formatter):
    """HH:MM:SS [L] logger: message, colored by level."""

    def __init__(self, color=True):
        super().__init__()
        self.color = color

    def format(self, record):
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        text = f"{stamp} [{record.levelname[0]}] {record.name}: {record.getMessage()}"
        if getattr(record, "owner", None):
            text += f" ({record.owner})"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        if self.color and record.levelno in _LEVEL_COLORS:
            text = f"{_LEVEL_COLORS[record.levelno]}{text}\033[0m"
        return text


def _env_flag(name):
    value = os.environ.get(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes")


def setup_logging(level=None, json_logs=None, log_dir=None):
    """Install console + rotating-file handlers on the root logger.

    level      LOG_LEVEL env, default INFO
    json_logs  LOG_JSON env, else on when RAILWAY_ENVIRONMENT is set
    log_dir    default DATA_DIR/logs
    """
    level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    if json_logs is None:
        json_logs = _env_flag("LOG_JSON")
    if json_logs is None:
        json_logs = bool(os.environ.get("RAILWAY_ENVIRONMENT"))
    log_dir = log_dir or LOG_DIR

    context = RequestContextFilter()
    handlers = []

    console = logging.StreamHandler()
    console.setFormatter(JSONFormatter() if json_logs
                         else HumanFormatter(color=console.stream.isatty()))
    handlers.append(console)

    try:
        os.makedirs(log_dir, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, LOG_FILE), maxBytes=5 * 1024 * 1024, backupCount=5)
        rotating.setFormatter(JSONFormatter())
        handlers.append(rotating)
    except OSError as e:
        console_only = f"file logging disabled ({e})"
    else:
        console_only = None

    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
    for handler in handlers:
        handler.addFilter(context)
        root.addHandler(handler)
    root.setLevel(getattr(logging, level, logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    log = logging.getLogger("orderbuddy")
    log.info("Logging ready: level=%s json=%s dir=%s", level, json_logs, log_dir)
    if console_only:
        log.warning(console_only)
