"""Loguru configuration for command-line and service entry points."""

import sys
from pathlib import Path

from loguru import logger

from taskforge.core.config import Settings, get_settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def configure_logging(settings: Settings | None = None, console: bool = True) -> None:
    """Configure loguru sinks based on settings.

    Removes the default handler, then adds a rotating file sink and
    (optionally) a colorized stderr sink.

    Args:
        settings: Application settings. Uses cached settings if not provided.
        console: Whether to log to stderr as well.
    """
    settings = settings or get_settings()
    logger.remove()

    level = "DEBUG" if settings.taskforge_debug else settings.taskforge_log_level

    logs_dir = Path(settings.taskforge_log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        str(logs_dir / "taskforge_{time:YYYY-MM-DD}.log"),
        rotation="100 MB",
        retention="7 days",
        level=level,
        format=LOG_FORMAT,
    )

    if console:
        logger.add(
            sys.stderr,
            level=level,
            format=LOG_FORMAT,
            colorize=True,
        )

    logger.debug(f"Logging configured at level {level} (dir: {logs_dir})")
