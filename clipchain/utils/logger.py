"""
Logging Configuration
Console logging plus a session-scoped adapter for per-request tracing
"""

import logging
import re
import sys
from typing import Any, MutableMapping, Optional, Tuple

_KEY_PARAM = re.compile(r"([?&]key=)[^&\s]+")


def setup_logger(name: str = "clipchain", level: int = logging.INFO) -> logging.Logger:
    """Set up and configure the application logger"""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_format = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(module)s | %(message)s",
        datefmt="%H:%M:%S"
    )
    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    return logger


def get_logger(name: str = "clipchain") -> logging.Logger:
    """Get the configured logger instance"""
    return logging.getLogger(name)


class SessionLogger(logging.LoggerAdapter):
    """Prefixes every message with the request's session id"""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['session_id']}] {msg}", kwargs


def session_logger(session_id: str, logger: Optional[logging.Logger] = None) -> SessionLogger:
    """Build a SessionLogger over the shared application logger"""
    return SessionLogger(logger or get_logger(), {"session_id": session_id[:8]})


def redact_url(url: Optional[str]) -> str:
    """Mask API keys embedded as query parameters"""
    if not url:
        return ""
    if url.startswith("data:"):
        return url[:30] + "..."
    return _KEY_PARAM.sub(r"\1***", url)
