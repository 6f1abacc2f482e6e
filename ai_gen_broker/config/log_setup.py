"""
Logging setup for the CLI and HTTP entry points.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "ai_gen_broker"


def configure_logging(level: str = "INFO", console: Optional[Console] = None) -> logging.Logger:
    """Attach a rich handler to the package logger.

    Calling this more than once replaces the previous handler rather than
    stacking duplicates.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        console: Optional rich console to write to (stderr by default)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))

    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    return logger
