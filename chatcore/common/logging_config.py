import json
import logging
import os
import re
import traceback
from datetime import datetime, timezone

# Attributes passed through ``extra=`` that are copied into the JSON line
CONTEXT_FIELDS = ("candidate", "session_id", "conversation_id")


class ApiKeyFilter(logging.Filter):
    KEY_PATTERN = re.compile(
        # key=... in URL params
        r"(?P<prefix>key=)(?P<key1>[^&\s\"']+)"
        r"|"
        # Authorization header values
        r"(?P<bearer_prefix>Bearer\s+)(?P<key2>[^\"'\s]+)"
        r"|"
        # Anthropic and Gemini credential headers
        r"(?P<header_prefix>x-api-key:\s*|x-goog-api-key:\s*)(?P<key3>[^\"'\s]+)"
        r"|"
        # Bare credentials in provider formats
        r"(?P<key4>AIzaSy[A-Za-z0-9\-_]{33}|sk-ant-[a-zA-Z0-9\-_]{20,}|sk-[a-zA-Z0-9\-_]{20,})"
    )
    MASK = "***MASKED***"

    # Configured provider credentials, masked wherever they appear verbatim
    KNOWN_KEYS = set()

    @classmethod
    def add_sensitive_keys(cls, keys):
        cls.KNOWN_KEYS.update(str(k) for k in keys or () if k)

    def mask(self, s: str) -> str:
        def replacer(match):
            for group in ("prefix", "bearer_prefix", "header_prefix"):
                if match.group(group):
                    return f"{match.group(group)}{self.MASK}"
            return self.MASK

        s = self.KEY_PATTERN.sub(replacer, s)
        for key in self.KNOWN_KEYS:
            if key in s:
                s = s.replace(key, self.MASK)
        return s

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        if record.args:
            record.args = tuple(
                self.mask(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """
    One JSON object per log line, plus any request context passed via ``extra``.
    """

    def format(self, record):
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "name": record.name,
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = str(value)

        if record.exc_info:
            log_record["exception"] = "".join(
                traceback.format_exception(*record.exc_info)
            )

        return json.dumps(log_record)


def install_key_filters(*logger_names: str) -> None:
    """Attaches a fresh ApiKeyFilter to each named logger, dropping stale ones."""
    for name in logger_names:
        target = logging.getLogger(name)
        for existing in [f for f in target.filters if isinstance(f, ApiKeyFilter)]:
            target.removeFilter(existing)
        target.addFilter(ApiKeyFilter())


def setup_json_logging(level=None):
    """
    Routes every log record through a single JSON handler on the root logger.

    The level defaults to the LOG_LEVEL environment variable (INFO).
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    # Catches records from loggers that have no filter of their own
    handler.addFilter(ApiKeyFilter())
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    # httpx logs full request URLs
    install_key_filters("httpx", "httpcore")
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).propagate = True

    logging.info("JSON logging configured.")
