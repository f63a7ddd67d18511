"""Logging setup.

Everything logs through loguru's global ``logger``; this module only decides
where records go. Reconciler and dispatcher code binds per-session context
(``logger.bind(session_id=...)``), which shows up in the ``extra`` column of
the text format and as fields of the JSON lines when ``LOG_JSON`` is set.
"""
import sys

from loguru import logger

log_format = ' | '.join(
    (
        '<lk>{time:YYYY-MM-DD HH:mm:ss.SSS}</>',
        '<lvl>{level:<8}</>',
        '<c>{name}::{function}:{line}</>',
        '{message}',
        '<lk>{extra}</>',
    )
)


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    logger.remove()  # drop loguru's default stderr handler
    if json:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=log_format)
