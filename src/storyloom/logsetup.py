"""Process-wide logging configuration."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_initialized = False


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> Optional[Path]:
    """Configure the root logger once.

    When ``log_dir`` is given every process run also gets its own
    ``log_YYYYmmdd_HHMMSS.txt`` file there. Returns that file path, if any.
    """
    global _initialized
    if _initialized:
        return None

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file: Optional[Path] = None
    if log_dir:
        d = Path(log_dir)
        d.mkdir(parents=True, exist_ok=True)
        log_file = d / f"log_{datetime.now():%Y%m%d_%H%M%S}.txt"
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=_FORMAT,
        datefmt=_DATEFMT,
        handlers=handlers,
        force=True,
    )

    # Reduce log level for third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    _initialized = True
    if log_file is not None:
        logging.getLogger(__name__).info("Logging to %s", log_file)
    return log_file
