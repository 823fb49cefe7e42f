"""
Logging setup: one JSON object per line on stdout when running in Azure (so
Log Analytics can filter on user, source and run), readable text locally,
plus a rotating file under <data_dir>/logs.

Sync code attaches its context with `extra=run_context(...)`; the JSON
formatter lifts those keys into the record, the text formatter ignores them.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone

# Keys that may be passed through `extra=` and are emitted as JSON fields
CONTEXT_KEYS = ("user_id", "source", "mode", "run_id")

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "apscheduler",
    "googleapiclient",
    "google_auth_httplib2",
    "sentence_transformers",
    "aiohttp.access",
)


def run_context(user_id: int, source: str, mode: str | None = None, run_id: int | None = None) -> dict:
    """Build the `extra=` mapping for a sync log line."""
    context = {"user_id": user_id, "source": source}
    if mode is not None:
        context["mode"] = mode
    if run_id is not None:
        context["run_id"] = run_id
    return context


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(log_level: str, logs_dir: str, azure_environment: bool) -> None:
    os.makedirs(logs_dir, exist_ok=True)
    level = getattr(logging, log_level.upper(), logging.INFO)

    console = logging.StreamHandler(sys.stdout)
    if azure_environment:
        console.setFormatter(JsonFormatter())
    else:
        console.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%H:%M:%S"))

    # 10MB per file, keep 5
    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(logs_dir, "concierge.log"),
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    for handler in (console, file_handler):
        handler.setLevel(level)
    logging.basicConfig(level=level, handlers=[console, file_handler], force=True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
