"""
cadbridge Logger

Persistent file logging for diagnosing bridge and host issues.
Logs are written to ~/.cadbridge/logs/cadbridge.log once configure_logging()
has been called (the CLI does this; library users may configure their own
handlers on the "cadbridge" logger instead).

Features:
- Rotating log files (max 5MB, keeps 3 backups)
- Command execution logging with timing
- Exception logging with full stack traces
- Configurable log level
"""

import logging
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

LOG_DIR = Path.home() / ".cadbridge" / "logs"
LOG_FILE = LOG_DIR / "cadbridge.log"

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_logger = logging.getLogger("cadbridge")
_log_file: Optional[Path] = None


def configure_logging(level: str = "INFO", log_file: Optional[str] = None, console: bool = True) -> logging.Logger:
    """Attach rotating file (and optional stderr) handlers to the cadbridge logger.

    Safe to call more than once; previously attached handlers are replaced.
    """
    global _log_file

    for handler in list(_logger.handlers):
        _logger.removeHandler(handler)
        handler.close()

    _logger.setLevel(level.upper())
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    path = Path(log_file) if log_file else LOG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        path,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    _logger.addHandler(file_handler)
    _log_file = path

    # stdout is reserved for protocol traffic (MCP stdio), so console goes to stderr
    if console and sys.stderr is not None:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        _logger.addHandler(stream_handler)

    return _logger


def get_logger() -> logging.Logger:
    """Get the cadbridge logger instance."""
    return _logger


def log_startup(role: str, address: str):
    """Log process startup."""
    _logger.info("=" * 60)
    _logger.info(f"cadbridge {role} starting")
    _logger.info(f"  Address: {address}")
    _logger.info(f"  Python: {sys.version.split()[0]}")
    _logger.info(f"  Log file: {get_log_file_path()}")
    _logger.info("=" * 60)


def log_shutdown(role: str):
    """Log process shutdown."""
    _logger.info(f"cadbridge {role} shutdown")
    _logger.info("-" * 60)


def describe_params(params: Dict[str, Any], limit: int = 120) -> str:
    """One-line view of request params: list sizes, truncated strings, no nested documents.

    Example:
        >>> describe_params({"items": [{}, {}], "transactionName": "Setup"})
        'items=[2] transactionName=Setup'
    """
    parts = []
    for key, value in params.items():
        if isinstance(value, list):
            parts.append(f"{key}=[{len(value)}]")
        elif isinstance(value, dict):
            keys = ", ".join(str(k) for k in value)
            parts.append(f"{key}={{{keys}}}")
        elif isinstance(value, str) and len(value) > 40:
            parts.append(f"{key}={value[:37]}...")
        else:
            parts.append(f"{key}={value}")
    text = " ".join(parts)
    return text if len(text) <= limit else text[: limit - 3] + "..."


def log_command(
    method: str,
    params: Dict[str, Any],
    duration_ms: float,
    result: Any = None,
    error: Optional[str] = None,
):
    """Log one host command. Batch replies add their succeeded/total item counts."""
    line = f"{method} ({duration_ms:.1f}ms)"
    if params:
        line += f" {describe_params(params)}"
    if error is not None:
        _logger.warning(f"{line} failed: {error}")
        return
    if isinstance(result, dict) and "succeeded" in result and "total" in result:
        line += f" -> {result['succeeded']}/{result['total']} items"
    _logger.info(line)


def log_exception(context: str, exc: BaseException):
    """Log an exception with full stack trace."""
    tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    _logger.error(f"EXCEPTION in {context}")
    _logger.error(f"  Type: {type(exc).__name__}")
    _logger.error(f"  Message: {exc}")
    _logger.error(f"  Traceback:\n{tb}")


def log_connection(side: str, event: str, detail: str = ""):
    """Log a connection lifecycle event for the client channel or the host; failures at WARNING."""
    level = logging.WARNING if event == "failed" else logging.INFO
    _logger.log(level, f"{side} connection {event}" + (f": {detail}" if detail else ""))


def get_recent_logs(lines: int = 100) -> str:
    """Get recent log lines for debugging."""
    try:
        with open(get_log_file_path(), encoding="utf-8") as f:
            return "".join(f.readlines()[-lines:])
    except OSError:
        return "Could not read log file"


def get_log_file_path() -> str:
    """Get the path to the active log file."""
    return str(_log_file or LOG_FILE)
