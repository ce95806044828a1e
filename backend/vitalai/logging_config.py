"""Centralized application logging configuration."""

import json
import logging
import threading
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path


STRUCTURED_EXTRA_FIELDS = [
    "user_id",
    "owner",
    "feedback_id",
    "response_id",
    "response_type",
    "rating",
    "comment_length",
    "feedback_count",
    "positive_ratio",
    "temperature",
    "top_p",
    "top_k",
    "max_output_tokens",
    "storage_key",
    "document_name",
    "document_hash",
    "block_hash",
    "previous_hash",
    "content_type",
    "size",
    "valid",
    "chain_length",
    "breaks",
    "forks",
    "error",
]


def _ensure_handler_lock(handler: logging.Handler) -> None:
    """Ensure handler has a valid lock before it is used by logging internals."""
    if getattr(handler, "lock", None) is None:
        handler.createLock()
    if getattr(handler, "lock", None) is None:
        handler.lock = threading.RLock()


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in STRUCTURED_EXTRA_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if "user_id" not in log_entry and "owner" in log_entry:
            log_entry["user_id"] = log_entry["owner"]
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_logging(log_level: str = "INFO", log_dir: str = "logs") -> None:
    """Configure root logger and standard noise filters for the app."""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    existing_handler_names = {handler.get_name() for handler in root_logger.handlers}

    if "app_console_handler" not in existing_handler_names:
        console_handler = logging.StreamHandler()
        console_handler.set_name("app_console_handler")
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        _ensure_handler_lock(console_handler)
        root_logger.addHandler(console_handler)

    if "app_file_handler" not in existing_handler_names:
        file_handler = TimedRotatingFileHandler(
            log_path / "app.log",
            when="midnight",
            interval=1,
            backupCount=30,
            utc=True,
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.set_name("app_file_handler")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StructuredFormatter())
        _ensure_handler_lock(file_handler)
        root_logger.addHandler(file_handler)

    # SQLite driver and HTTP clients log every call at DEBUG/INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
