"""Content profiling for stored blobs.

The registry only depends on the :class:`Profiler` protocol. The default
:class:`MediaTypeProfiler` sniffs leading bytes and falls back on the
filename extension; it is intentionally small and meant to be replaced by a
full profiler where deeper analysis (language, format versions) is needed.
"""

from __future__ import annotations

import json
import mimetypes
from pathlib import Path
from typing import List, Optional, Protocol

from Switchboard.MediaRegistry.models import (
    MEDIATYPE_OCTET_STREAM,
    MEDIATYPE_TAR,
    MEDIATYPE_TEXT,
    MEDIATYPE_ZIP,
    Profile,
)

SNIFF_BYTES = 8192

_MAGIC = (
    (b"%PDF", "application/pdf"),
    (b"PK\x03\x04", MEDIATYPE_ZIP),
    (b"PK\x05\x06", MEDIATYPE_ZIP),
    (b"\x1f\x8b", "application/gzip"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
)


class Profiler(Protocol):
    def profile(self, path: Path) -> List[Profile]:
        """Return classification results, primary first.

        Raises:
            ClassificationError: If the content cannot be classified.
            OSError: If the blob cannot be read.
        """
        ...


def sniff_media_type(head: bytes) -> Optional[str]:
    """Classify ``head`` by magic numbers and markup signatures."""

    for magic, media_type in _MAGIC:
        if head.startswith(magic):
            return media_type
    if len(head) >= 262 and head[257:262] == b"ustar":
        return MEDIATYPE_TAR

    stripped = head.lstrip()
    prefix = stripped[:64].lower()
    if prefix.startswith(b"<?xml"):
        return "application/xml"
    if prefix.startswith(b"<!doctype html") or prefix.startswith(b"<html"):
        return "text/html"
    return None


def _decode_text(head: bytes) -> Optional[str]:
    if b"\x00" in head:
        return None
    try:
        return head.decode("utf-8")
    except UnicodeDecodeError as e:
        # a multi-byte sequence cut off by the sniff window is still text
        if e.start >= len(head) - 3 and e.reason == "unexpected end of data":
            return head[: e.start].decode("utf-8")
        return None


class MediaTypeProfiler:
    """Default :class:`Profiler` based on byte sniffing and filename hints."""

    def profile(self, path: Path) -> List[Profile]:
        path = Path(path)
        with path.open("rb") as handle:
            head = handle.read(SNIFF_BYTES)
            complete = not handle.read(1)

        guessed, _ = mimetypes.guess_type(path.name, strict=False)
        primary = self._classify(head, complete)
        if primary is None:
            primary = Profile(guessed or MEDIATYPE_OCTET_STREAM)

        profiles = [primary]
        if guessed and not primary.is_media_type(guessed):
            profiles.append(Profile(guessed))
        return profiles

    @staticmethod
    def _classify(head: bytes, complete: bool) -> Optional[Profile]:
        media_type = sniff_media_type(head)
        if media_type is not None:
            return Profile(media_type)
        if not head:
            return Profile(MEDIATYPE_TEXT, encoding="utf-8")

        text = _decode_text(head)
        if text is None:
            return None
        if complete and text.lstrip()[:1] in ("{", "["):
            try:
                json.loads(text)
            except ValueError:
                pass
            else:
                return Profile("application/json", encoding="utf-8")
        return Profile(MEDIATYPE_TEXT, encoding="utf-8")


__all__ = ("Profiler", "MediaTypeProfiler", "sniff_media_type")
