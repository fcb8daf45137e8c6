"""
Logging for Transhot.

The web app and CLI call init_default_logging() once; stages that keep their
own file (translation) use setup_module_logger(). Files live under
TRANSHOT_LOG_DIR (default: ./logs next to the package) and are dated:

    <LOG_DIR>/<YYYYMMDD>_transhot.log
    <LOG_DIR>/translation/<YYYYMMDD>/translation.log
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_DIR = Path(os.getenv("TRANSHOT_LOG_DIR") or Path(__file__).parent.parent / "logs").expanduser()

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# HTTP and SDK clients log every request at INFO
_QUIET_LOGGERS = ("PIL", "httpx", "httpcore", "openai", "aiohttp.access")


def _formatter() -> logging.Formatter:
    return logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)


def _env_flag(name: Optional[str]) -> bool:
    if not name:
        return False
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def dated_log_path(log_file: str, now: Optional[datetime] = None) -> Path:
    """Flat names get a date prefix; nested names get a date directory."""
    date_str = (now or datetime.now()).strftime("%Y%m%d")
    relative = Path(log_file)
    if relative.parent == Path("."):
        return LOG_DIR / f"{date_str}_{relative.name}"
    return LOG_DIR / relative.parent / date_str / relative.name


def _file_handler(path: Path, level: int) -> Optional[logging.FileHandler]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as exc:
        logging.getLogger(__name__).warning(f"log file {path} unavailable: {exc}")
        return None
    handler.setLevel(level)
    handler.setFormatter(_formatter())
    return handler


def _stdout_handler(level: int) -> logging.StreamHandler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_formatter())
    return handler


def _writes_stdout(logger: logging.Logger) -> bool:
    return any(
        type(handler) is logging.StreamHandler and handler.stream is sys.stdout
        for handler in logger.handlers
    )


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    console: bool = True,
) -> logging.Logger:
    """Replace the root handlers with stdout and/or a dated file in LOG_DIR."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if console:
        root_logger.addHandler(_stdout_handler(level))
    if log_file:
        handler = _file_handler(dated_log_path(log_file), level)
        if handler is not None:
            root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return root_logger


def setup_module_logger(
    name: str,
    log_file: str,
    level: int = logging.INFO,
    console_env: Optional[str] = None,
) -> logging.Logger:
    """
    Give a module its own log file, detached from the root handlers.

    Set console_env (or MODULE_LOG_TO_STDOUT) to a truthy value to mirror the
    module's lines to stdout as well.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    path = dated_log_path(log_file)
    has_file = any(
        isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == path
        for handler in logger.handlers
    )
    if not has_file:
        handler = _file_handler(path, level)
        if handler is not None:
            logger.addHandler(handler)

    mirror = _env_flag("MODULE_LOG_TO_STDOUT") or _env_flag(console_env)
    if mirror and not _writes_stdout(logger):
        logger.addHandler(_stdout_handler(level))
    return logger


def get_log_level(env_var: str, default: int = logging.INFO) -> int:
    """Read a level name (DEBUG, INFO, ...) from the environment."""
    name = os.getenv(env_var, "").strip().upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


_initialized = False


def init_default_logging() -> None:
    """Configure root logging once per process (TRANSHOT_LOG_LEVEL)."""
    global _initialized
    if _initialized:
        return
    setup_logging(
        level=get_log_level("TRANSHOT_LOG_LEVEL", logging.INFO),
        log_file="transhot.log",
    )
    _initialized = True


__all__ = [
    "LOG_DIR",
    "dated_log_path",
    "get_log_level",
    "init_default_logging",
    "setup_logging",
    "setup_module_logger",
]
