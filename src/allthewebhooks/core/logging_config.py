"""Logging Configuration - Centralized logging setup.

Provides a standard logging configuration for the dispatch pipeline.
Delivery failures are never raised into the host process, so the log
(and the stats counters) is where administrators see them.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


def setup_logging(
    log_level: int = logging.INFO,
    log_file: Optional[str] = "allthewebhooks.log",
    log_dir: str = "logs",
) -> None:
    """Configure logging for the application.
    
    Args:
        log_level: Logging level (default: INFO)
        log_file: Log file name, or None to log to stdout only
        log_dir: Directory holding the log file
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    
    if log_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path / log_file, encoding="utf-8"))
    
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s",
        handlers=handlers,
    )
    
    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    
    logging.getLogger("allthewebhooks").info(
        f"Logging initialized ({logging.getLevelName(log_level)} level)"
    )
