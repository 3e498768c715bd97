"""One JSON object per log line, to stderr and optionally a rotating file."""
import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from delish.config import Settings

# Keys passed through ``extra=`` by the order, webhook, unlock and email code.
CONTEXT_FIELDS = (
    "order_id", "list_id", "session_id", "payment_id", "event_id",
    "event_type", "jti", "reason", "status_code", "error",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _handlers(settings: Settings) -> list[logging.Handler]:
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(
            RotatingFileHandler(
                settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
            )
        )
    return handlers


def configure_logging(settings: Settings) -> None:
    formatter = JsonFormatter()
    handlers = _handlers(settings)
    for handler in handlers:
        handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers = handlers
