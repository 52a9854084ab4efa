import json
import logging
import threading
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterable

from .path_config import BASE_DIR, LOG_DIR
from .config_manager import load_config

REDACTED = "********"


class SecretFilter(logging.Filter):
    """Mask registered secrets in every record passing through a handler.

    Passwords are registered when intents are loaded; the filter rewrites the
    final message so neither the format string nor its arguments leak them.
    """

    def __init__(self):
        super().__init__()
        self._secrets: set = set()
        self._lock = threading.Lock()

    def add(self, *secrets: str) -> None:
        with self._lock:
            self._secrets.update(s for s in secrets if s)

    def clear(self) -> None:
        with self._lock:
            self._secrets.clear()

    def redact(self, text: str) -> str:
        with self._lock:
            secrets = sorted(self._secrets, key=len, reverse=True)
        for secret in secrets:
            text = text.replace(secret, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if self._secrets:
            message = record.getMessage()
            redacted = self.redact(message)
            if redacted != message:
                record.msg = redacted
                record.args = None
        return True


secret_filter = SecretFilter()


def register_secrets(secrets: Iterable[str]) -> None:
    secret_filter.add(*secrets)


def setup_logger(cfg: Dict[str, Any] | None = None):
    """Configure the root logger for file and console output.

    Settings come from ``config.yml`` (see :mod:`mysql_rights.config_manager`)
    so every module can keep using ``logging.getLogger(__name__)`` and share
    the same handlers. Both handlers carry :data:`secret_filter`.
    """

    if cfg is None:
        try:
            cfg = load_config()
        except (OSError, ValueError):
            cfg = {"log_path": str(LOG_DIR / "mysql_rights.log"), "log_level": "INFO"}

    log_path = Path(cfg.get("log_path") or LOG_DIR / "mysql_rights.log")
    log_path = log_path if log_path.is_absolute() else BASE_DIR / log_path
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_level = getattr(logging, str(cfg.get("log_level", "INFO")).upper(), logging.INFO)

    logger = logging.getLogger()  # root logger
    logger.setLevel(log_level)

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    file_handler = RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    file_handler.addFilter(secret_filter)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(secret_filter)

    logger.handlers.clear()
    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)

    return logger


class StructuredLogger:
    """
    Logger emitting one JSON document per event, with persistent context
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.context: Dict[str, Any] = {}

    def add_context(self, **kwargs) -> None:
        self.context.update(kwargs)

    def clear_context(self) -> None:
        self.context.clear()

    def _format_message(self, message: str, **kwargs) -> str:
        log_data = {
            'timestamp': time.time(),
            'message': message,
            'context': self.context.copy(),
            **kwargs
        }
        return secret_filter.redact(json.dumps(log_data, default=str))

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs) -> None:
        self.logger.error(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(self._format_message(message, **kwargs))

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(self._format_message(message, **kwargs))


def get_logger(name: str) -> StructuredLogger:
    """Return a structured logger"""
    return StructuredLogger(name)
