"""Logging handlers for the webcam timelapse service."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

DEFAULT_LOG_FILE = Path("logs/webcam_timelapse.log")
ROOT_LOGGER_NAME = "webcam_timelapse"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def _open_log_file(log_file: Union[str, Path]) -> Tuple[Optional[logging.Handler], Optional[str]]:
    """Open ``log_file``, falling back to its bare name in the working directory.

    Returns the handler (or None) and a warning to emit once logging is up.
    """
    requested = Path(log_file)
    if not requested.is_absolute():
        requested = Path.cwd() / requested

    try:
        requested.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(requested, encoding="utf-8"), None
    except OSError as exc:
        reason = exc

    fallback = Path.cwd() / requested.name
    try:
        handler = logging.FileHandler(fallback, encoding="utf-8")
    except OSError as exc:
        return None, f"Cannot write logs to '{requested}' or '{fallback}': {exc}"
    return handler, f"Cannot write logs to '{requested}' ({reason}); using '{fallback}'"


def resolve_level(level: Union[int, str]) -> int:
    """Accept ``logging`` constants or names such as ``"debug"``."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    logger_name: Optional[str] = None,
    *,
    level: Union[int, str] = logging.INFO,
    log_file: Union[str, Path, None] = DEFAULT_LOG_FILE,
    include_stream: bool = True,
) -> logging.Logger:
    """Install file and console handlers on the root logger.

    ``log_file=None`` keeps logs on the console only. Returns the logger
    named ``logger_name`` (the package logger by default).
    """
    numeric_level = resolve_level(level)
    formatter = logging.Formatter(LOG_FORMAT)

    handlers: List[logging.Handler] = []
    warning: Optional[str] = None
    if log_file:
        file_handler, warning = _open_log_file(log_file)
        if file_handler is not None:
            handlers.append(file_handler)
    if include_stream:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)

    logger = logging.getLogger(logger_name or ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)
    if warning:
        logger.warning(warning)
    return logger


__all__ = ["DEFAULT_LOG_FILE", "configure_logging", "resolve_level"]
