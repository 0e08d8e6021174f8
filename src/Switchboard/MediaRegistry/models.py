"""Entry and profile records kept by the media registry.

An :class:`Entry` is only ever built after classification succeeded, so every
instance carries a primary :class:`Profile`. The on-disk ``path`` belongs to
the blob store; entries reference it so the registry can delete it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple, Union
from uuid import UUID

MEDIATYPE_TEXT = "text/plain"
MEDIATYPE_ZIP = "application/zip"
MEDIATYPE_TAR = "application/x-tar"
MEDIATYPE_OCTET_STREAM = "application/octet-stream"

MAX_INLINE_CONTENT = 4 * 1024


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Profile:
    """One classification result for a stored blob."""

    media_type: str
    encoding: Optional[str] = None
    features: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if not self.media_type or not self.media_type.strip():
            raise ValueError("media_type must not be empty")
        object.__setattr__(self, "media_type", self.media_type.strip().lower())
        object.__setattr__(self, "features", MappingProxyType(dict(self.features)))

    def is_media_type(self, media_type: str) -> bool:
        return self.media_type == (media_type or "").strip().lower()

    def is_text(self) -> bool:
        return self.is_media_type(MEDIATYPE_TEXT)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"mediaType": self.media_type}
        if self.encoding:
            data["encoding"] = self.encoding
        if self.features:
            data["features"] = dict(self.features)
        return data


@dataclass(frozen=True)
class LinkSource:
    """Provenance of an entry downloaded from a URL, DOI or handle."""

    original_identifier: str
    download_link: str
    redirects: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "originalLink": self.original_identifier,
            "downloadLink": self.download_link,
            "linksRedirects": self.redirects,
        }


@dataclass(frozen=True)
class ArchiveSource:
    """Provenance of an entry extracted from a registered archive."""

    archive_id: UUID
    entry_name: str

    def to_dict(self) -> dict[str, Any]:
        return {"archiveID": str(self.archive_id), "archiveEntryName": self.entry_name}


Source = Union[LinkSource, ArchiveSource]


@dataclass(frozen=True)
class Preview:
    """Inline text preview of the first bytes of an entry."""

    content: str
    is_incomplete: bool


@dataclass(eq=False)
class Entry:
    """A registered, classified and policy-accepted blob.

    Attributes:
        id: Identity assigned at ingestion, never reused
        filename: Sanitized display filename
        path: Location handle returned by the blob store
        profile: Primary classification result
        alternatives: Remaining classification results, in profiler order
        creation: Creation time, used for eviction
        source: Optional provenance
    """

    id: UUID
    filename: str
    path: Path
    profile: Profile
    alternatives: Tuple[Profile, ...] = ()
    creation: datetime = field(default_factory=utcnow)
    source: Optional[Source] = None
    _preview: Optional[Preview] = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or utcnow()) - self.creation

    def preview(self) -> Preview:
        """Return the cached inline preview, reading the blob on first use."""

        with self._lock:
            if self._preview is None:
                with self.path.open("rb") as handle:
                    head = handle.read(MAX_INLINE_CONTENT + 1)
                self._preview = Preview(
                    content=head[:MAX_INLINE_CONTENT].decode("utf-8", errors="replace"),
                    is_incomplete=len(head) > MAX_INLINE_CONTENT,
                )
            return self._preview

    def invalidate_preview(self) -> None:
        with self._lock:
            self._preview = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": str(self.id),
            "filename": self.filename,
            "creation": self.creation.isoformat(),
            "profile": self.profile.to_dict(),
            "alternatives": [p.to_dict() for p in self.alternatives],
        }
        if self.source is not None:
            data["source"] = self.source.to_dict()
        return data


__all__ = (
    "MEDIATYPE_TEXT",
    "MEDIATYPE_ZIP",
    "MEDIATYPE_TAR",
    "MEDIATYPE_OCTET_STREAM",
    "MAX_INLINE_CONTENT",
    "Profile",
    "LinkSource",
    "ArchiveSource",
    "Source",
    "Preview",
    "Entry",
    "utcnow",
)
