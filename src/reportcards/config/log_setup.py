import logging
from typing import Optional

from reportcards.config.settings import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger("reportcards")
    logger.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))

    if not any(getattr(handler, "_reportcards", False) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._reportcards = True
        logger.addHandler(handler)

    return logger
