"""Stdlib logging setup shared by the CLI and scripts."""

import logging

from kmm.reconcile.config import settings

# Per-request chatter from the admin API client
_NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str | int | None = None) -> None:
    """Configure root logging.

    Args:
        level: Level name or number; defaults to settings.log_level.
            Unknown names fall back to INFO.
    """
    if level is None:
        level = settings.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
