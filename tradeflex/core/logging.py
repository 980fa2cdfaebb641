from __future__ import annotations

import os
from pathlib import Path

from loguru import logger as _logger


def setup_logging(log_dir: str = "logs", level: str = "INFO") -> None:
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    # Allow env override for log level (e.g., DEBUG)
    level = str(os.getenv("TRADEFLEX_LOG_LEVEL", level)).upper()

    _logger.remove()
    # Console sink can be disabled when output is piped into reports
    disable_console = str(os.getenv("TRADEFLEX_DISABLE_CONSOLE_LOG", "0")).lower() in {"1", "true", "yes"}
    if not disable_console:
        _logger.add(
            sink=lambda msg: print(msg, end=""),
            level=level,
            colorize=True,
            backtrace=False,
            diagnose=False,
        )
    _logger.add(
        Path(log_dir) / "tradeflex.log",
        rotation="10 MB",
        retention=10,
        level=level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[component]} | {message}",
    )
    _logger.configure(extra={"component": "core"})


def get_logger() -> _logger.__class__:
    return _logger

