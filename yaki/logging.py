"""Logging configuration for the yaki package."""
import logging
import sys

from .config import LOG_FORMAT

NOISY_LOGGERS = ("urllib3", "kubernetes", "requests")


def setup_logging(debug_mode: bool = False, level: str = "INFO") -> None:
    """Configure root logging for a yaki invocation.

    Args:
        debug_mode: Force DEBUG level and keep third-party loggers verbose
        level: Level name used when debug mode is off
    """
    log_level = logging.DEBUG if debug_mode else getattr(logging, level, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    # Disable debug logging for noisy libraries
    if not debug_mode:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
