"""Filesystem blob store for registered media.

Layout: ``<root>/<uuid>/<sanitized filename>``. Each identity gets its own
directory, so concurrent saves for distinct identities never touch the same
path. Writes go to a temporary file in the target directory and are promoted
with :func:`os.replace`.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
import unicodedata
from pathlib import Path
from typing import BinaryIO, Union
from uuid import UUID

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "file"
MAX_FILENAME_LENGTH = 255
CHUNK_SIZE = 1 << 20

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._ -]")


class DataStore:
    """Persist byte streams under caller-supplied identities."""

    def __init__(self, root_dir: Union[str, Path]) -> None:
        self.root = Path(root_dir).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def sanitize(filename: str | None) -> str:
        """Reduce ``filename`` to a safe single path component.

        Directory components and control characters are dropped, unsafe
        characters become ``_``. The result may be empty.

        Example:
            >>> DataStore.sanitize("../../etc/pa$$wd")
            'pa__wd'
        """
        if not filename:
            return ""
        name = unicodedata.normalize("NFKD", filename)
        name = name.replace("\\", "/").rsplit("/", 1)[-1]
        name = "".join(ch for ch in name if unicodedata.category(ch)[0] != "C")
        name = name.encode("ascii", "ignore").decode("ascii")
        name = _UNSAFE_CHARS.sub("_", name)
        name = name.lstrip(". ").rstrip()
        return name[:MAX_FILENAME_LENGTH]

    def save(self, entry_id: UUID, filename: str, stream: BinaryIO) -> Path:
        """Copy ``stream`` into the store and return the blob path.

        Raises:
            OSError: If the blob cannot be written. Errors raised while
                reading ``stream`` propagate unchanged.
        """
        directory = self.root / str(entry_id)
        directory.mkdir(parents=True, exist_ok=False)
        dest = directory / (self.sanitize(filename) or DEFAULT_FILENAME)
        try:
            self._write_atomic(dest, stream)
        except BaseException:
            shutil.rmtree(directory, ignore_errors=True)
            raise
        logger.debug(f"Stored {entry_id} at {dest}")
        return dest

    def replace(self, entry_id: UUID, path: Path, data: bytes) -> None:
        """Rewrite the blob of ``entry_id`` with ``data``."""
        self._check_owned(entry_id, path)
        with tempfile.NamedTemporaryFile(dir=path.parent, prefix=".tmp-", delete=False) as tmp:
            tmp_path = Path(tmp.name)
            try:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            except BaseException:
                tmp.close()
                tmp_path.unlink(missing_ok=True)
                raise
        os.replace(tmp_path, path)
        logger.debug(f"Replaced content of {entry_id} ({len(data)} bytes)")

    def delete(self, entry_id: UUID, path: Path) -> None:
        """Remove the blob directory of ``entry_id``; failures are logged."""
        try:
            self._check_owned(entry_id, path)
            shutil.rmtree(path.parent)
            logger.debug(f"Deleted {entry_id}")
        except FileNotFoundError:
            logger.debug(f"Blob of {entry_id} already gone: {path}")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to delete blob of {entry_id} at {path}: {e}")

    def exists(self, entry_id: UUID) -> bool:
        return (self.root / str(entry_id)).is_dir()

    def _check_owned(self, entry_id: UUID, path: Path) -> None:
        if path.parent.resolve() != (self.root / str(entry_id)).resolve():
            raise ValueError(f"{path} is not the blob location of {entry_id}")

    @staticmethod
    def _write_atomic(dest: Path, stream: BinaryIO) -> None:
        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(dir=dest.parent, prefix=".tmp-", delete=False) as tmp:
                tmp_path = Path(tmp.name)
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    tmp.write(chunk)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, dest)
        finally:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()


__all__ = ("DataStore", "DEFAULT_FILENAME")
