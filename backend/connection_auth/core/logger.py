"""
Logging setup for the identity service.

Every module keeps its own ``logging.getLogger(__name__)``; this only
configures the root handler once at application start.
"""

import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger with a single stdout handler.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()

    # Replace our own handler on re-configuration; leave other handlers alone
    for existing in list(root_logger.handlers):
        if getattr(existing, "_connection_auth", False):
            root_logger.removeHandler(existing)

    root_logger.setLevel(numeric_level)

    handler = logging.StreamHandler(sys.stdout)
    handler._connection_auth = True
    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Route uvicorn through the root handler
    for logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        log = logging.getLogger(logger_name)
        log.handlers = []
        log.propagate = True

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    for logger_name in ["httpcore", "httpx", "aiosqlite", "multipart"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
