"""Logging setup for the price service.

The root level comes from ``settings.LOG_LEVEL``. Provider clients log
under the ``integrations`` package and can be tuned on their own with
``PROVIDER_LOG_LEVEL``, e.g. to trace retry and cooldown decisions
without debug output from the rest of the app.
"""

import logging

from config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"

PROVIDER_LOGGER = "integrations"

# HTTP transport, chart download and persistence internals
THIRD_PARTY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "urllib3",
    "yfinance",
    "peewee",
)


def setup_logging() -> None:
    """Configure root, provider and third-party log levels from settings.

    Degraded fetches are logged at WARNING, so they stay visible at the
    default level even though third-party loggers are capped there.
    """
    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        level=getattr(logging, settings.LOG_LEVEL),
        force=True,
    )

    provider_level = settings.PROVIDER_LOG_LEVEL
    logging.getLogger(PROVIDER_LOGGER).setLevel(
        getattr(logging, provider_level) if provider_level else logging.NOTSET
    )

    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
