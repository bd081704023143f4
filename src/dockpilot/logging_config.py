"""
Process-wide logging setup for dockpilot.

Usage at an entry point (cli.py):

    from dockpilot.logging_config import setup_logging
    setup_logging(log_dir=settings.home_dir, level=settings.log_level)

All modules log through ``logging.getLogger("dockpilot.<area>")``; this
attaches one file handler to the ``dockpilot`` parent logger so every area
lands in ``<log_dir>/dockpilot.log``. Per-run project logs are separate, see
``dockpilot.run_log``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE_NAME = "dockpilot.log"

_ROOT_LOGGER = "dockpilot"


def setup_logging(
    *,
    log_dir: Optional[Path] = None,
    level: str = "INFO",
) -> Path:
    """
    Attach the dockpilot file handler. Safe to call more than once.

    Args:
        log_dir: Directory for ``dockpilot.log``. Defaults to ``~/.dockpilot``.
        level: Minimum level for the ``dockpilot`` logger.

    Returns:
        Path of the process log file.
    """
    log_path = Path(log_dir) if log_dir else Path.home() / ".dockpilot"
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = str(log_path / LOG_FILE_NAME)

    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not any(
        isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == log_file
        for h in logger.handlers
    ):
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    return Path(log_file)
