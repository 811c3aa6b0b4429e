"""Process-wide logging setup shared by the Celery worker and scripts."""

from __future__ import annotations

import logging

from docpipeline.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Third-party loggers that are chatty at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "botocore", "aiobotocore", "openai")


def configure_logging(logger: logging.Logger | None = None) -> None:
    """
    Apply the standard format/level. When `logger` is given (Celery's
    after_setup_logger hook) its handlers are reformatted in place;
    otherwise the root logger is configured via basicConfig.
    """
    level = logging.DEBUG if settings.debug else getattr(
        logging, settings.log_level.upper(), logging.INFO
    )

    if logger is None:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setFormatter(logging.Formatter(LOG_FORMAT))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
