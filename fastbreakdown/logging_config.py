"""
Universal logging configuration for fastbreakdown.

This module provides a standardized logger setup with RichHandler for consistent
logging across the entire codebase.
"""

from typing import Optional

from loguru import logger
from rich.logging import RichHandler

from .config import get_settings


def setup_logger(level: Optional[str] = None) -> None:
    """
    Configure logger with RichHandler for better formatting.

    This function sets up the loguru logger with RichHandler, which provides
    formatted output with colors and rich tracebacks. This should be called
    once at the start of your script or test file.

    Parameters
    ----------
    level : str, optional
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Defaults to
        ``FASTBREAKDOWN_LOG_LEVEL`` (INFO when unset).

    Examples:
    --------
    >>> from fastbreakdown.logging_config import setup_logger, logger
    >>> setup_logger(level="DEBUG")
    >>> logger.debug("Greedy step details will now be shown")
    """
    if level is None:
        level = get_settings().log_level

    # Remove default handler
    logger.remove()

    logger.add(
        RichHandler(markup=True, rich_tracebacks=True),
        format="{message}",
        level=level.upper(),
    )


__all__ = ["logger", "setup_logger"]
