"""Logging setup for the supervisor process."""

import logging
from pathlib import Path

from procvisor.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_handler: logging.Handler | None = None


def configure_logging(
    level: str | int | None = None,
    log_file: str | Path | None = None,
) -> logging.Logger:
    """
    Attach a single handler to the ``procvisor`` logger.

    Calling it again replaces the previous handler, so the daemon can switch
    from the terminal to its log file after detaching.

    Args:
        level: Log level name or number. Defaults to ``Settings.log_level``.
        log_file: Append to this file instead of writing to stderr.

    Returns:
        The configured ``procvisor`` logger.
    """
    global _handler

    logger = logging.getLogger("procvisor")
    if _handler is not None:
        logger.removeHandler(_handler)
        _handler.close()

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        _handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    else:
        _handler = logging.StreamHandler()

    _handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(_handler)
    if level is None:
        level = get_settings().log_level
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger
