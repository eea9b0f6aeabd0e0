"""
IMPORTANT for other modules:
1. Always use get_logger from this module to get loggers. Never call plain `print`.
2. Explicitly pass `console` from this module to Rich progress bars and other Rich components.

Logging behavior:

- The root logger gets a RichHandler for pretty console output on first import.
- Applications that already configured the root logger keep their handlers;
  setup_global_handler only installs one when none is present.
- The level comes from the LOG_LEVEL environment variable (default INFO).
"""

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

console = Console(stderr=True, quiet=os.getenv("STREAMFLOW_QUIET", "") == "1")
log_level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
rich_handler = RichHandler(console=console, rich_tracebacks=True, show_path=False)


def setup_global_handler(handler: logging.Handler, include_name: bool = True):
    logging.basicConfig(
        level=log_level,
        handlers=[handler],
        format="%(name)s | %(message)s" if include_name else "%(message)s",
    )


setup_global_handler(rich_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name.

    Args:
        name (str): The name of the logger.

    Returns:
        logging.Logger: The configured logger.
    """
    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    return logger


__all__ = ["get_logger", "setup_global_handler", "console", "rich_handler"]
