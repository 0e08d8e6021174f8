"""Read single members out of zip and tar archives held in the blob store."""

from __future__ import annotations

import contextlib
import io
import logging
import tarfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterator

from Switchboard.MediaRegistry.errors import ArchiveError
from Switchboard.MediaRegistry.models import MEDIATYPE_TAR, MEDIATYPE_ZIP, Profile

logger = logging.getLogger(__name__)

ARCHIVE_MEDIA_TYPES = frozenset({MEDIATYPE_ZIP, MEDIATYPE_TAR})

# errors raised while decompressing or checking a member body
_BODY_ERRORS = (zipfile.BadZipFile, tarfile.TarError, EOFError, zlib.error)


class _MemberStream(io.RawIOBase):
    """Readable stream over an archive member; body failures raise ArchiveError."""

    def __init__(self, member: BinaryIO, entry_name: str) -> None:
        self._member = member
        self._entry_name = entry_name

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        try:
            return self._member.readinto(b)
        except _BODY_ERRORS as e:
            raise ArchiveError(f"Corrupt archive entry {self._entry_name!r}: {e}") from e


def is_archive(profile: Profile) -> bool:
    return profile.media_type in ARCHIVE_MEDIA_TYPES


def entry_basename(entry_name: str) -> str:
    return PurePosixPath(entry_name.replace("\\", "/")).name


@contextlib.contextmanager
def open_archive_entry(path: Path, profile: Profile, entry_name: str) -> Iterator[BinaryIO]:
    """Yield a readable stream over ``entry_name`` inside the archive at ``path``.

    Raises:
        ArchiveError: If the archive type is unsupported, the archive is
            corrupt, or the member does not exist or is not a regular file.
            Reads from the yielded stream raise it when the member body is
            damaged (bad CRC, truncated data).
    """
    if not entry_name:
        raise ArchiveError("No archive entry name given")

    if profile.is_media_type(MEDIATYPE_ZIP):
        try:
            archive = zipfile.ZipFile(path)
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveError(f"Bad zip archive: {e}") from e
        with archive:
            try:
                info = archive.getinfo(entry_name)
            except KeyError as e:
                raise ArchiveError(f"No entry {entry_name!r} in archive") from e
            if info.is_dir():
                raise ArchiveError(f"Archive entry {entry_name!r} is a directory")
            with archive.open(info) as member:
                yield _MemberStream(member, entry_name)
        return

    if profile.is_media_type(MEDIATYPE_TAR):
        try:
            archive = tarfile.open(path, mode="r:*")
        except (tarfile.TarError, OSError) as e:
            raise ArchiveError(f"Bad tar archive: {e}") from e
        with archive:
            try:
                info = archive.getmember(entry_name)
            except KeyError as e:
                raise ArchiveError(f"No entry {entry_name!r} in archive") from e
            member = archive.extractfile(info) if info.isfile() else None
            if member is None:
                raise ArchiveError(f"Archive entry {entry_name!r} is not a regular file")
            with member:
                yield _MemberStream(member, entry_name)
        return

    raise ArchiveError(f"Unsupported archive type: {profile.media_type}")


__all__ = ("ARCHIVE_MEDIA_TYPES", "is_archive", "entry_basename", "open_archive_entry")
