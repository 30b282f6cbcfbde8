from __future__ import annotations

import logging

from marketplace_finance.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """
    Root logging setup, called once at application start.
    Modules log through `logging.getLogger(__name__)`.
    """
    lvl = (level or settings.LOG_LEVEL or "INFO").upper()
    logging.basicConfig(level=lvl, format=LOG_FORMAT)

    # SQL echo stays off unless someone asks for DEBUG explicitly
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING if lvl != "DEBUG" else logging.INFO)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
