from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from ledger import config

logger = logging.getLogger(__name__)


def avatar_filename(data: bytes) -> str:
    return f"{hashlib.sha256(data).hexdigest()}.png"


def store_avatar(data: bytes) -> Tuple[str, bool]:
    """
    Write an avatar under its content hash.

    Returns the filename and whether this call created the file. Identical
    images share one file; an existing file is left as is.
    """
    directory = Path(config.AVATAR_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    filename = avatar_filename(data)
    target = directory / filename
    if target.exists():
        return filename, False

    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_path, target)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise
    logger.info("Stored avatar %s (%d bytes)", filename, len(data))
    return filename, True


def discard_avatar(filename: str) -> None:
    """Remove an avatar written by an import that did not commit."""
    (Path(config.AVATAR_DIR) / filename).unlink(missing_ok=True)
    logger.info("Discarded avatar %s", filename)


def avatar_path(filename: str) -> Optional[Path]:
    """Resolve a stored avatar filename, or None if it is missing or escapes AVATAR_DIR."""
    directory = Path(config.AVATAR_DIR).resolve()
    path = (directory / filename).resolve()
    if path.parent != directory or not path.is_file():
        return None
    return path
