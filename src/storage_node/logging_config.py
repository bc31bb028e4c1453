"""
Centralized logging configuration for the storage node.

This module provides a single setup_logging function that configures
logging consistently with:
- Console output on stdout
- Optional file output to {log_dir}/{service_name}.log
- Fresh log file on each start unless LOG_APPEND=1
"""

import logging
import logging.handlers
import os
import sys
import threading
from pathlib import Path
from typing import Optional, Union

# Thread-safe lock for logging configuration
_config_lock = threading.Lock()
_MODULE_LOGGER = logging.getLogger(__name__)
_UNKNOWN_LOGGER_NAME = "<unknown>"
_TECHNICAL_FORMAT = "%(asctime)s.%(msecs)03d - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _close_handlers(logger: logging.Logger, logger_name: Optional[str] = None) -> None:
    """Close all handlers for a logger, logging any errors."""
    for handler in list(logger.handlers):
        try:
            handler.close()
        except OSError as e:  # Best-effort cleanup operation
            safe_name = logger_name if logger_name else _UNKNOWN_LOGGER_NAME
            _MODULE_LOGGER.debug("Handler close failed for logger '%s': %s", safe_name, e)


def _reset_root_handlers(root_logger: logging.Logger) -> None:
    _close_handlers(root_logger)
    root_logger.handlers = []


def _build_console_handler(debug: bool) -> logging.Handler:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(_TECHNICAL_FORMAT, _DATE_FORMAT))
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    return console_handler


def _configure_file_handler(service_name: Optional[str], log_dir: Optional[Path]) -> Optional[logging.Handler]:
    if not service_name or log_dir is None:
        return None

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{service_name}.log"
    file_mode = "a" if os.getenv("LOG_APPEND") == "1" else "w"

    file_handler = logging.handlers.WatchedFileHandler(log_path, mode=file_mode)
    file_handler.setFormatter(logging.Formatter(_TECHNICAL_FORMAT, _DATE_FORMAT))
    file_handler.setLevel(logging.INFO)
    return file_handler


def _suppress_noisy_third_parties() -> None:
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def setup_logging(
    service_name: Optional[str] = None,
    log_dir: Optional[Union[str, Path]] = None,
    *,
    debug: bool = False,
) -> None:
    """Configure root logging for the application.

    Args:
        service_name: Name used for the log file; no file is written without it.
        log_dir: Directory receiving ``{service_name}.log``.
        debug: Lower the console and root level to DEBUG.
    """

    with _config_lock:
        root_logger = logging.getLogger()
        _reset_root_handlers(root_logger)

        root_logger.addHandler(_build_console_handler(debug))

        resolved_dir = Path(log_dir).expanduser() if log_dir is not None else None
        file_handler = _configure_file_handler(service_name, resolved_dir)
        if file_handler:
            root_logger.addHandler(file_handler)

        root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
        _suppress_noisy_third_parties()


__all__ = ["setup_logging"]
