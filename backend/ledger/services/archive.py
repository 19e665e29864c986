"""
Archive intake: confirm an upload is a readable ZIP and pull out its members.

Expected layout (members are matched by basename, so a zipped folder works):

- userData.json       required, a single JSON object
- transactions.json   required, a JSON array of objects
- avatar.png          optional PNG image

Nothing here touches the database.
"""

from __future__ import annotations

import io
import logging
import posixpath
import zipfile
from dataclasses import dataclass
from typing import Dict, Optional

from ledger import config
from ledger.errors import ArchiveTooLargeError, MalformedArchiveError, ValidationError

logger = logging.getLogger(__name__)

USER_MEMBER = "userData.json"
TRANSACTIONS_MEMBER = "transactions.json"
AVATAR_MEMBER = "avatar.png"

REQUIRED_MEMBERS = (USER_MEMBER, TRANSACTIONS_MEMBER)
KNOWN_MEMBERS = REQUIRED_MEMBERS + (AVATAR_MEMBER,)

ZIP_CONTENT_TYPES = {
    "application/zip",
    "application/x-zip-compressed",
    "application/x-zip",
}

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


@dataclass
class ArchiveMembers:
    user_data: bytes
    transactions: bytes
    avatar: Optional[bytes] = None


def is_zip_upload(filename: Optional[str], content_type: Optional[str]) -> bool:
    if content_type and content_type.split(";")[0].strip().lower() in ZIP_CONTENT_TYPES:
        return True
    return bool(filename) and filename.lower().endswith(".zip")


def _read_member(archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> bytes:
    limit = config.MAX_MEMBER_BYTES
    if info.file_size > limit:
        raise ArchiveTooLargeError(f"{posixpath.basename(info.filename)} exceeds {limit} bytes")
    try:
        with archive.open(info) as handle:
            # Directory sizes can lie; never read more than the limit.
            data = handle.read(limit + 1)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, OSError) as exc:
        raise MalformedArchiveError(f"unreadable archive entry {info.filename}: {exc}") from exc
    except NotImplementedError as exc:
        raise MalformedArchiveError(f"unsupported compression for {info.filename}") from exc
    except RuntimeError as exc:
        # zipfile signals password-protected members this way.
        raise MalformedArchiveError(f"{info.filename} is encrypted") from exc
    if len(data) > limit:
        raise ArchiveTooLargeError(f"{posixpath.basename(info.filename)} exceeds {limit} bytes")
    return data


def _locate_members(archive: zipfile.ZipFile) -> Dict[str, zipfile.ZipInfo]:
    found: Dict[str, zipfile.ZipInfo] = {}
    for info in archive.infolist():
        if info.is_dir() or info.filename.startswith("__MACOSX/"):
            continue
        name = posixpath.basename(info.filename)
        if name not in KNOWN_MEMBERS:
            continue
        if name in found:
            raise ValidationError(f"archive contains more than one {name}")
        found[name] = info
    return found


def read_archive(data: bytes) -> ArchiveMembers:
    """
    Validate ``data`` as a ZIP archive and return its known members.

    Raises ArchiveTooLargeError, MalformedArchiveError or ValidationError;
    required members are checked together so the error names every one
    that is absent.
    """
    if len(data) > config.MAX_ARCHIVE_BYTES:
        raise ArchiveTooLargeError(f"archive exceeds {config.MAX_ARCHIVE_BYTES} bytes")
    if not data:
        raise MalformedArchiveError("archive is empty")

    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise MalformedArchiveError(f"not a valid ZIP archive: {exc}") from exc

    with archive:
        members = _locate_members(archive)
        missing = [name for name in REQUIRED_MEMBERS if name not in members]
        if missing:
            raise ValidationError(f"missing {', '.join(missing)}")

        contents = {name: _read_member(archive, info) for name, info in members.items()}

    avatar = contents.get(AVATAR_MEMBER)
    if avatar is not None and not avatar.startswith(PNG_SIGNATURE):
        raise ValidationError(f"{AVATAR_MEMBER} is not a PNG image")

    logger.debug("Archive members read: %s", ", ".join(sorted(contents)))
    return ArchiveMembers(
        user_data=contents[USER_MEMBER],
        transactions=contents[TRANSACTIONS_MEMBER],
        avatar=avatar,
    )
