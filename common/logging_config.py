"""
Logging Configuration Utilities

Role-prefixed logging setup shared by the monitor and the simulator.
Third-party network libraries are capped at their own level so per-frame
library chatter does not drown the monitor's DEBUG output.
"""

import logging
import sys
from typing import Iterable, Optional

# websockets logs every frame at DEBUG; urllib3/werkzeug log every request
LIBRARY_LOGGERS = ('websockets', 'urllib3', 'werkzeug')


def setup_logging(role: str, level: str = "INFO", log_file: Optional[str] = None,
                  library_level: str = "WARNING",
                  library_loggers: Iterable[str] = LIBRARY_LOGGERS) -> logging.Logger:
    """
    Configure logging with role-based formatting.

    Args:
        role: Role identifier (e.g., "fire_monitor", "sim_endpoint")
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for logging (default None = console only)
        library_level: Level applied to library_loggers
        library_loggers: Names of third-party loggers to cap

    Returns:
        The configured root logger
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        f'%(asctime)s - [{role}] %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Repeated setup must not duplicate output
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            logging.info(f"Logging to file: {log_file}")
        except OSError as e:
            logging.error(f"Failed to create log file {log_file}: {e}")

    capped_level = getattr(logging, library_level.upper(), logging.WARNING)
    for name in library_loggers:
        logging.getLogger(name).setLevel(max(capped_level, numeric_level))

    logging.info(f"Logging configured: role={role}, level={level}")
    return root_logger
