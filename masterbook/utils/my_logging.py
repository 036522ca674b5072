# masterbook/utils/my_logging.py
"""Logging configuration shared by the API process and the Celery worker"""
import logging
import sys

from masterbook.config.settings import get_settings

# Libraries that log every request or query at INFO
CHATTY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "googleapiclient.discovery",
    "googleapiclient.discovery_cache",
    "google_auth_oauthlib",
)


def setup_logging(verbose=True):
    settings = get_settings()
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO) if verbose else logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not verbose:
        for name in ("celery", "uvicorn", "uvicorn.error", "uvicorn.access", "alembic"):
            logging.getLogger(name).setLevel(logging.ERROR)
