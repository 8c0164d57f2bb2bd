"""Logging configuration."""
import logging
import sys

from cv_validator.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging() -> None:
    """Configure application logging."""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Avoid stacking handlers when uvicorn reloads the app.
    if not any(getattr(h, "_cv_validator", False) for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._cv_validator = True
        root_logger.addHandler(handler)

    # Third-party clients are chatty at INFO.
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("pdfminer").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
