"""Shared helpers for the core and solver modules.

Provides corruption-safe JSON read/write with backup rotation (used by
the durable transcript cache), plus small formatting helpers for
content digests.
"""

import hashlib
import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def content_digest(data: bytes) -> str:
    """Return the hex SHA-256 digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def short_digest(digest: str, length: int = 8) -> str:
    """Truncate a digest for log output (``abcdef12...``)."""
    return f"{digest[:length]}..."


def safe_json_read(
    filepath: str, max_backups: int = 3,
) -> Optional[Dict[str, Any]]:
    """Read a JSON object, falling back to backups if corrupted.

    Tries the primary file first, then ``file.json.backup.1``,
    ``file.json.backup.2`` and so on until one parses.

    Args:
        filepath: Path to the primary JSON file.
        max_backups: Maximum number of backup files to check.

    Returns:
        Parsed dictionary, or ``None`` if every candidate is missing
        or corrupted.
    """
    paths = [filepath] + [
        f"{filepath}.backup.{i}"
        for i in range(1, max_backups + 1)
    ]
    for path in paths:
        if not os.path.exists(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            logger.debug("Skipping unreadable JSON %s: %s", path, e)
            continue
        if isinstance(data, dict):
            if path != filepath:
                logger.warning(
                    "Recovered %s from backup %s", filepath, path,
                )
            return data
    return None


def safe_json_write(
    filepath: str,
    data: Dict[str, Any],
    max_backups: int = 3,
) -> bool:
    """Atomically write *data* as JSON, keeping rotated backups.

    The write sequence is:
        1. Rotate existing backups (``backup.1`` -> ``backup.2``, ...).
        2. Copy the current file to ``backup.1``.
        3. Write to a temporary file and validate by re-reading it.
        4. ``os.replace`` the temporary file over the target.

    Args:
        filepath: Destination path for the JSON file.
        data: Dictionary to serialise.
        max_backups: Number of backup generations to keep; ``0``
            disables backups.

    Returns:
        ``True`` on success, ``False`` if the write failed (the failure
        is logged, not raised).
    """
    try:
        dirpath = os.path.dirname(filepath)
        if dirpath:
            os.makedirs(dirpath, exist_ok=True)

        if max_backups > 0 and os.path.exists(filepath):
            backup_base = filepath + ".backup"
            for i in range(max_backups - 1, 0, -1):
                old = f"{backup_base}.{i}"
                if os.path.exists(old):
                    os.replace(old, f"{backup_base}.{i + 1}")
            os.replace(filepath, f"{backup_base}.1")

        temp_file = filepath + ".tmp"
        with open(temp_file, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False)

        with open(temp_file, "r", encoding="utf-8") as fh:
            json.load(fh)

        os.replace(temp_file, filepath)
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.warning(
            "Could not safely write JSON to %s: %s", filepath, e,
        )
        return False
