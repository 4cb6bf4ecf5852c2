import logging
import sys
from app.core.config import get_settings

TELEMETRY_LOGGER = "app.telemetry"


def _stdout_handler(level: str, fmt: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def setup_logging():
    """
    Configure the 'app' logger tree.

    Routing events go to 'app.telemetry' as bare JSON lines on their own
    handler so they can be collected without the log prefix.
    """
    settings = get_settings()
    level = settings.log_level.upper()

    logger = logging.getLogger("app")
    logger.setLevel(level)
    if not logger.handlers:
        logger.addHandler(_stdout_handler(level, "%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    telemetry = logging.getLogger(TELEMETRY_LOGGER)
    telemetry.propagate = False
    telemetry.disabled = not settings.telemetry_log_enabled
    if not telemetry.handlers:
        telemetry.setLevel(logging.INFO)
        telemetry.addHandler(_stdout_handler("INFO", "%(message)s"))

    return logger


def get_logger(name: str):
    """Get a child of the 'app' logger, configuring the tree on first use."""
    setup_logging()
    return logging.getLogger(f"app.{name}")
