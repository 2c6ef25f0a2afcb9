"""
Logging setup for entry points
"""
import sys
from typing import Optional
from loguru import logger


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Replace loguru's default handler with the ledger's console (and file) sinks

    Args:
        level: Minimum level for console output
        log_file: Optional path for a rotating log file
    """
    logger.remove()
    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=level
    )

    if log_file:
        logger.add(log_file, rotation="1 day", level="DEBUG", enqueue=True)
