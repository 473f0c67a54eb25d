"""Logging configuration for the challenge solver.

Sets up a dual-handler logging pipeline:

1. **Console** -- :class:`SafeStreamHandler` that gracefully handles
   Unicode on Windows by falling back to ``cp1252`` replacement
   encoding.
2. **File** -- :class:`CompressedRotatingFileHandler` writing to
   ``logs/challenge_solver.log`` with automatic gzip rotation (10 MiB
   per file, 5 backups).

Usage::

    from core.logging_setup import setup_logging
    setup_logging("DEBUG")
"""

import gzip
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from core.config import LOGS_DIR

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_FILENAME = "challenge_solver.log"

# Third-party loggers that drown out solver output at DEBUG
NOISY_LOGGERS = ("aiohttp.access", "asyncio", "urllib3")


class CompressedRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that gzip-compresses rotated log files."""

    def rotation_filename(self, default_name: str) -> str:
        """Append ``.gz`` to the rotated file name."""
        return f"{default_name}.gz"

    def rotate(self, source: str, dest: str) -> None:
        """Compress *source* into *dest* and remove *source*.

        Args:
            source: Path to the uncompressed log file.
            dest: Destination path for the compressed file.
        """
        with open(source, "rb") as f_in:
            with gzip.open(dest, "wb") as f_out:
                shutil.copyfileobj(f_in, f_out)
        os.remove(source)


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that never crashes on unencodable characters.

    Windows consoles default to a narrow code page.  Instead of raising
    :exc:`UnicodeEncodeError` mid-solve, the message is re-encoded to
    ``cp1252`` with replacement characters.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            stream = self.stream
            try:
                stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                safe_msg = msg.encode(
                    "cp1252", errors="replace",
                ).decode("cp1252")
                stream.write(safe_msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
) -> None:
    """Configure the root logger with console and file handlers.

    Args:
        log_level: Logging level name (e.g. ``"DEBUG"``, ``"INFO"``).
            Unknown names fall back to ``INFO``.
        log_dir: Directory for the rotating log file.  Defaults to
            :data:`core.config.LOGS_DIR`.
    """
    if sys.platform == "win32" and hasattr(sys.stdout, "reconfigure"):
        try:
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")
        except Exception:
            os.environ["PYTHONIOENCODING"] = "utf-8:replace"

    level = getattr(logging, log_level.upper(), logging.INFO)

    log_path = os.path.join(log_dir or str(LOGS_DIR), LOG_FILENAME)
    os.makedirs(os.path.dirname(log_path), exist_ok=True)
    file_handler = CompressedRotatingFileHandler(
        log_path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    stream_handler = SafeStreamHandler(sys.stdout)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[file_handler, stream_handler],
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
