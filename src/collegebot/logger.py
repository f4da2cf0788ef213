"""Centralized observability logger for the orchestration engine.

Writes a structured, always-on log to .collegebot_output/collegebot.log.
Every turn, tag extraction, tool dispatch and run termination is logged so
a conversation can be reconstructed from the log after the fact.

Usage in any module:
    from .logger import get_logger
    log = get_logger("turn")
    log.info("turn finished: outcome=%s", outcome)

The log file rotates at 5 MB and keeps the last 5 files.
"""

import logging
import os
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# ── Singleton state ──────────────────────────────────────────

_initialized = False
_log_dir: Optional[Path] = None

ROOT_LOGGER = "collegebot"


def _ensure_log_dir() -> Path:
    """Return (and create) the log directory."""
    global _log_dir
    if _log_dir is not None:
        return _log_dir
    override = os.environ.get("COLLEGEBOT_LOG_DIR")
    _log_dir = Path(override) if override else Path.cwd() / ".collegebot_output"
    _log_dir.mkdir(parents=True, exist_ok=True)
    return _log_dir


def init_logging(
    workspace: Optional[str] = None,
    level: int = logging.DEBUG,
) -> None:
    """Initialise the file logger.  Safe to call more than once."""
    global _initialized, _log_dir

    if workspace:
        _log_dir = Path(workspace) / ".collegebot_output"
        _log_dir.mkdir(parents=True, exist_ok=True)
    else:
        _ensure_log_dir()

    if _initialized:
        return
    _initialized = True

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)

    # Avoid duplicate handlers if init is called twice
    if root.handlers:
        return

    log_path = _log_dir / "collegebot.log"

    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=5 * 1024 * 1024,   # 5 MB per file
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d | %(levelname)-5s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(fmt)
    root.addHandler(handler)

    # Mirror to stderr when COLLEGEBOT_DEBUG is set
    if os.environ.get("COLLEGEBOT_DEBUG"):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.DEBUG)
        stderr_handler.setFormatter(fmt)
        root.addHandler(stderr_handler)

    root.info(
        "=== Logging initialised === pid=%d python=%s log=%s",
        os.getpid(),
        sys.version.split()[0],
        log_path,
    )


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the 'collegebot' namespace.

    Initialises logging lazily on first call so module-level loggers
    created at import time still end up in the file.
    """
    if not _initialized:
        init_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


# ── Convenience helpers ──────────────────────────────────────

def log_exception(logger: logging.Logger, msg: str, exc: BaseException) -> None:
    """Log an exception with full traceback."""
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("%s: %s\n%s", msg, exc, "".join(tb))


def truncate(text: str, max_len: int = 200) -> str:
    """Truncate a string for log readability."""
    if not text:
        return "(empty)"
    text = text.replace("\n", "\\n")
    if len(text) <= max_len:
        return text
    return text[:max_len] + f"...[{len(text)} chars]"
