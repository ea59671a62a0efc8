"""Logging setup."""

import logging
from pathlib import Path
from typing import Optional

_configured = False


def setup_logging(log_dir: Optional[Path] = None, level: int = logging.INFO):
    """Setup logging configuration."""
    global _configured
    if _configured:
        return

    log_dir = log_dir or (Path.home() / ".cache" / "craftlaunch")
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    # File handler
    file_handler = logging.FileHandler(log_dir / "launcher.log", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter('%(levelname)s: %(message)s')
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    _configured = True
