"""Logging setup shared by the API and the consumer worker"""

import logging
import logging.handlers
import os
from typing import Optional

from .config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: Settings, process_name: Optional[str] = None) -> None:
    """Configure root logging once per process"""
    formatter = logging.Formatter(LOG_FORMAT)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers = [console_handler]

    # File handler with rotation, one file per process
    if settings.LOG_FILE:
        log_file = settings.LOG_FILE
        if process_name:
            root, ext = os.path.splitext(log_file)
            log_file = f"{root}-{process_name}{ext or '.log'}"
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )

    # Silence noisy loggers in production
    if settings.ENVIRONMENT == "production":
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("amqp").setLevel(logging.WARNING)
