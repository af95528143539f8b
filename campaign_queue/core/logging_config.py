from __future__ import annotations

import os
import logging
from pythonjsonlogger import jsonlogger
from colorama import Fore, Style, init as colorama_init
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
import sys
import re
import json
from typing import Any, Dict

from campaign_queue.core.config import settings


class LogSanitizer:
    """Utility class for sanitizing sensitive data in logs."""

    # Customer addresses flow through every step of a job, so email is the
    # pattern that matters most here.
    SENSITIVE_PATTERNS = {
        'email': r'[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}',
        'api_key': r'(?i)(api[_-]?key|apikey|token|secret)[_-]?[=:]\s*[\w\-\.]+',
        'password': r'(?i)(password|passwd|pwd)[_-]?[=:]\s*[\w\-\.]+',
        'bearer': r'(?i)bearer\s+[\w\-\.=]+',
        'openai_key': r'sk-[A-Za-z0-9_\-]{16,}',
    }

    # Fields that should always be redacted
    SENSITIVE_FIELDS = {
        'password', 'token', 'secret', 'api_key', 'apikey', 'authorization',
        'email', 'address', 'customer_email', 'reply_text', 'body'
    }

    @classmethod
    def sanitize_value(cls, value: Any) -> Any:
        """Sanitize a single value."""
        if isinstance(value, str):
            for pattern_name, pattern in cls.SENSITIVE_PATTERNS.items():
                value = re.sub(pattern, f"[REDACTED_{pattern_name.upper()}]", value)
            return value
        elif isinstance(value, dict):
            return cls.sanitize_dict(value)
        elif isinstance(value, (list, tuple)):
            return type(value)(cls.sanitize_value(item) for item in value)
        return value

    @classmethod
    def sanitize_dict(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Sanitize a dictionary of data."""
        if not isinstance(data, dict):
            return data

        sanitized = {}
        for key, value in data.items():
            lowered = str(key).lower()
            if any(sensitive in lowered for sensitive in cls.SENSITIVE_FIELDS):
                if 'email' in lowered or 'address' in lowered:
                    sanitized[key] = "[REDACTED_EMAIL]"
                elif 'api_key' in lowered or 'apikey' in lowered:
                    sanitized[key] = "[REDACTED_API_KEY]"
                elif 'password' in lowered:
                    sanitized[key] = "[REDACTED_PASSWORD]"
                else:
                    sanitized[key] = "[REDACTED]"
            else:
                sanitized[key] = cls.sanitize_value(value)
        return sanitized

    @classmethod
    def sanitize_log_record(cls, record: logging.LogRecord) -> logging.LogRecord:
        """Sanitize a log record in place."""
        if isinstance(record.msg, dict):
            record.msg = cls.sanitize_dict(record.msg)
        elif isinstance(record.msg, str):
            record.msg = cls.sanitize_value(record.msg)

        if record.args:
            if isinstance(record.args, tuple):
                record.args = tuple(cls.sanitize_value(arg) for arg in record.args)
            else:
                record.args = cls.sanitize_value(record.args)

        # Extra fields land directly on the record
        for attr_name in list(vars(record)):
            if attr_name in _STANDARD_RECORD_ATTRS:
                continue
            attr_value = getattr(record, attr_name)
            lowered = attr_name.lower()
            if any(sensitive in lowered for sensitive in cls.SENSITIVE_FIELDS):
                if 'email' in lowered or 'address' in lowered:
                    setattr(record, attr_name, "[REDACTED_EMAIL]")
                else:
                    setattr(record, attr_name, "[REDACTED]")
            else:
                setattr(record, attr_name, cls.sanitize_value(attr_value))

        return record


_STANDARD_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "_is_central_handler"
}


class SanitizingFilter(logging.Filter):
    """Filter that redacts sensitive values before any handler sees them."""

    def filter(self, record: logging.LogRecord) -> bool:
        LogSanitizer.sanitize_log_record(record)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        # Fields named in the format string arrive pre-filled with None
        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["name"] = record.name
        if not log_record.get("source"):
            log_record["source"] = f"{record.module}:{record.lineno}"
        if not log_record.get("component"):
            log_record["component"] = getattr(record, "component", record.name.split(".")[-1])


class EnhancedColorFormatter(logging.Formatter):
    LEVEL_COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.MAGENTA
    }
    CONTEXT_COLOR = Fore.CYAN
    KEY_COLOR = Fore.YELLOW
    VALUE_COLOR = Fore.WHITE
    TIME_COLOR = Fore.LIGHTBLACK_EX

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelname, '')
        reset = Style.RESET_ALL
        time_str = datetime.now(timezone.utc).isoformat()
        msg = record.getMessage()
        component = getattr(record, "component", None)
        context_str = f"{self.CONTEXT_COLOR}[{component}]{reset}" if component else ""
        level_str = f"{color}[{record.levelname}]{reset}"
        time_str_col = f"{self.TIME_COLOR}{time_str}{reset}"
        if isinstance(record.msg, dict):
            lines = json.dumps(record.msg, indent=2, default=str).splitlines()
            colored = []
            for line in lines:
                if ':' in line:
                    key, val = line.split(':', 1)
                    colored.append(f"{self.KEY_COLOR}{key}:{reset}{self.VALUE_COLOR}{val}{reset}")
                else:
                    colored.append(f"{self.VALUE_COLOR}{line}{reset}")
            msg = '\n' + '\n'.join(colored)
        formatted = f"{level_str} {time_str_col} {context_str} {msg}"
        if record.exc_info:
            formatted = f"{formatted}\n{self.formatException(record.exc_info)}"
        return formatted


def _build_formatter() -> logging.Formatter:
    if settings.LOG_FORMAT.lower() == "console":
        colorama_init()
        return EnhancedColorFormatter()
    return CustomJsonFormatter(
        fmt="%(timestamp)s %(level)s %(name)s %(message)s %(source)s %(component)s",
        json_ensure_ascii=False,
    )


def init_logging(level: int | None = None) -> logging.Logger:
    """Bootstrap application-wide logging. Safe to call multiple times."""

    if level is None:
        level_name = settings.LOG_LEVEL.upper()
        level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()

    # Idempotency: if we already added our sentinel handler, just return
    for h in root_logger.handlers:
        if getattr(h, "_is_central_handler", False):
            root_logger.setLevel(level)
            return logging.getLogger("campaign_queue")

    formatter = _build_formatter()
    sanitizer = SanitizingFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    console_handler.addFilter(sanitizer)
    console_handler._is_central_handler = True  # sentinel attr

    handlers = [console_handler]

    if settings.LOG_TO_FILE:
        log_dir = os.path.abspath(settings.LOG_DIR)
        os.makedirs(log_dir, exist_ok=True)
        # One shared file for every worker process
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "combined.log"),
            maxBytes=settings.LOG_ROTATION_SIZE,
            backupCount=settings.LOG_BACKUP_COUNT,
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        file_handler.addFilter(sanitizer)
        file_handler._is_central_handler = True
        handlers.append(file_handler)

    # Reset existing handlers (avoid duplicate logs when reloaded)
    root_logger.handlers = []
    root_logger.setLevel(level)
    for handler in handlers:
        root_logger.addHandler(handler)

    # Quiet noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    app_logger = logging.getLogger("campaign_queue")
    app_logger.info("Centralised logger initialised", extra={"component": "logger"})
    return app_logger

