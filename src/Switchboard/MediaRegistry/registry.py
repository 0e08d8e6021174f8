# === NAVMAP v1 ===
# {
#   "module": "Switchboard.MediaRegistry.registry",
#   "purpose": "Ingestion pipeline, live entry mapping and eviction sweep.",
#   "sections": [
#     {
#       "id": "entrymap",
#       "name": "EntryMap",
#       "anchor": "class-entrymap",
#       "kind": "class"
#     },
#     {
#       "id": "mediaregistry",
#       "name": "MediaRegistry",
#       "anchor": "class-mediaregistry",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Ingestion pipeline, live entry mapping and eviction sweep.

The :class:`MediaRegistry` keeps records about stored files, identified by
UUIDs. Every ingestion runs ``store → classify → police → register`` on the
calling thread; any failure after the blob is stored deletes it again before
the error reaches the caller. A daemon thread evicts entries older than the
storage policy allows.

Design Notes
------------
- The policy verdict is taken before the entry is inserted, so readers can
  never observe an entry that is about to be rolled back.
- Rollback steps are registered on a :class:`contextlib.ExitStack` and
  released with ``pop_all()`` once the entry is registered.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Protocol, Sequence, Union
from uuid import UUID

import httpx

from Switchboard.MediaRegistry.archive import entry_basename, is_archive, open_archive_entry
from Switchboard.MediaRegistry.config.models import MediaRegistryConfig
from Switchboard.MediaRegistry.errors import (
    ArchiveError,
    ClassificationError,
    EntryNotFoundError,
    MediaRegistryError,
    StorageError,
    UnsupportedContentError,
    log_ingest_failure,
)
from Switchboard.MediaRegistry.links import IdentifierResolver, LinkResolver
from Switchboard.MediaRegistry.models import (
    ArchiveSource,
    Entry,
    LinkSource,
    Preview,
    Profile,
    Source,
    utcnow,
)
from Switchboard.MediaRegistry.net.client import (
    MAX_ALLOWED_REDIRECTS,
    build_http_client,
    open_download,
)
from Switchboard.MediaRegistry.policy import StoragePolicy
from Switchboard.MediaRegistry.profiler import MediaTypeProfiler, Profiler
from Switchboard.MediaRegistry.storage import DataStore

logger = logging.getLogger(__name__)

EntryId = Union[UUID, str]


class BlobStore(Protocol):
    def save(self, entry_id: UUID, filename: str, stream: BinaryIO) -> Path: ...

    def replace(self, entry_id: UUID, path: Path, data: bytes) -> None: ...

    def delete(self, entry_id: UUID, path: Path) -> None: ...


def _as_uuid(entry_id: EntryId) -> Optional[UUID]:
    if isinstance(entry_id, UUID):
        return entry_id
    try:
        return UUID(str(entry_id))
    except ValueError:
        return None


class EntryMap:
    """Thread-safe ``UUID -> Entry`` mapping.

    Each operation is atomic on its own; iteration works on a snapshot so
    the sweep never races with concurrent inserts.
    """

    def __init__(self) -> None:
        self._entries: Dict[UUID, Entry] = {}
        self._lock = threading.Lock()

    def put(self, entry: Entry) -> None:
        with self._lock:
            self._entries[entry.id] = entry

    def get(self, entry_id: UUID) -> Optional[Entry]:
        with self._lock:
            return self._entries.get(entry_id)

    def pop(self, entry_id: UUID) -> Optional[Entry]:
        with self._lock:
            return self._entries.pop(entry_id, None)

    def remove(self, entry: Entry) -> bool:
        """Remove ``entry`` only if it is still the registered instance."""
        with self._lock:
            if self._entries.get(entry.id) is entry:
                del self._entries[entry.id]
                return True
            return False

    def snapshot(self) -> List[Entry]:
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        with self._lock:
            return entry_id in self._entries


class MediaRegistry:
    """Registry of ingested media.

    Args:
        data_store: Blob store persisting entry content
        profiler: Content classifier
        policy: Storage policy (acceptance rules, lifetime, cleanup period)
        client: HTTPX client used for downloads (must not follow redirects)
        resolver: Identifier parser for URLs, DOIs and handles
        start_cleanup: Start the periodic eviction thread
    """

    cleanup_join_timeout: float = 5.0

    def __init__(
        self,
        data_store: BlobStore,
        profiler: Profiler,
        policy: StoragePolicy,
        client: httpx.Client,
        *,
        resolver: Optional[LinkResolver] = None,
        start_cleanup: bool = True,
    ) -> None:
        self.data_store = data_store
        self.profiler = profiler
        self.policy = policy
        self.client = client
        self.resolver = resolver or IdentifierResolver()
        self._entries = EntryMap()
        self._stop = threading.Event()
        self._cleanup_thread: Optional[threading.Thread] = None
        if start_cleanup:
            self._cleanup_thread = threading.Thread(
                target=self._cleanup_loop,
                name="media-registry-cleanup",
                daemon=True,
            )
            self._cleanup_thread.start()

    @classmethod
    def from_config(
        cls,
        config: MediaRegistryConfig,
        *,
        profiler: Optional[Profiler] = None,
        resolver: Optional[LinkResolver] = None,
        client: Optional[httpx.Client] = None,
        start_cleanup: bool = True,
    ) -> "MediaRegistry":
        """Build a registry with the default collaborators for ``config``."""
        logger.info(
            f"Starting media registry {config.instance_id or '<unnamed>'} "
            f"(store={config.storage.root_dir}, config={config.config_hash()[:8]})"
        )
        return cls(
            DataStore(config.storage.root_dir),
            profiler or MediaTypeProfiler(),
            StoragePolicy.from_config(config.policy),
            client or build_http_client(config.http),
            resolver=resolver,
            start_cleanup=start_cleanup,
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def add_by_url(self, identifier: str, profile: Optional[Profile] = None) -> Entry:
        """Download ``identifier`` (URL, DOI or handle) and register it."""
        try:
            link = self.resolver.resolve(identifier)
            with open_download(
                self.client, link.download_link, max_redirects=MAX_ALLOWED_REDIRECTS
            ) as download:
                filename = link.filename
                if download.filename and DataStore.sanitize(download.filename):
                    filename = download.filename
                source = LinkSource(identifier, download.url, download.redirects)
                with download.stream() as stream:
                    return self._ingest(filename, stream, profile, source)
        except MediaRegistryError as e:
            log_ingest_failure(logger, e, identifier=identifier)
            raise

    def add_file(
        self, filename: str, stream: BinaryIO, profile: Optional[Profile] = None
    ) -> Entry:
        """Register an uploaded byte stream."""
        try:
            return self._ingest(filename, stream, profile, None)
        except MediaRegistryError as e:
            log_ingest_failure(logger, e, filename=filename)
            raise

    def add_from_archive(
        self, archive_id: EntryId, entry_name: str, profile: Optional[Profile] = None
    ) -> Entry:
        """Register one member of a registered zip or tar entry."""
        archive = self.get(archive_id)
        if archive is None:
            raise EntryNotFoundError(archive_id)
        if not is_archive(archive.profile):
            raise ArchiveError(f"Entry {archive.id} is not an archive ({archive.profile.media_type})")
        source = ArchiveSource(archive.id, entry_name)
        try:
            with open_archive_entry(archive.path, archive.profile, entry_name) as stream:
                return self._ingest(entry_basename(entry_name), stream, profile, source)
        except MediaRegistryError as e:
            log_ingest_failure(logger, e, identifier=f"{archive.id}!{entry_name}")
            raise

    def _ingest(
        self,
        filename: str,
        stream: BinaryIO,
        profile: Optional[Profile],
        source: Optional[Source],
    ) -> Entry:
        entry_id = uuid.uuid4()
        try:
            path = self.data_store.save(entry_id, filename, stream)
        except OSError as e:
            raise StorageError(f"Cannot store {filename!r}: {e}") from e

        with contextlib.ExitStack() as rollback:
            rollback.callback(self._discard_blob, entry_id, path)

            profiles = [profile] if profile is not None else self._classify(path)
            entry = Entry(
                id=entry_id,
                filename=path.name,
                path=path,
                profile=profiles[0],
                alternatives=tuple(profiles[1:]),
                source=source,
            )
            self.policy.accept_profile(entry.profile)
            self._entries.put(entry)
            rollback.pop_all()

        logger.debug(f"Registered {entry.id} ({entry.filename}, {entry.profile.media_type})")
        return entry

    def _classify(self, path: Path) -> Sequence[Profile]:
        try:
            profiles = self.profiler.profile(path)
        except OSError as e:
            raise StorageError(f"Cannot read stored blob for profiling: {e}") from e
        if not profiles:
            raise ClassificationError("empty profiling result")
        return list(profiles)

    def _discard_blob(self, entry_id: UUID, path: Path) -> None:
        logger.debug(f"Rolling back {entry_id}")
        try:
            self.data_store.delete(entry_id, path)
        except Exception as e:
            logger.warning(f"Rollback of {entry_id} failed to delete {path}: {e}")

    # ------------------------------------------------------------------
    # Lookup & mutation
    # ------------------------------------------------------------------

    def get(self, entry_id: EntryId) -> Optional[Entry]:
        """Return the registered entry, or ``None`` when unknown."""
        key = _as_uuid(entry_id)
        if key is None:
            return None
        return self._entries.get(key)

    def entries(self) -> List[Entry]:
        return self._entries.snapshot()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        key = _as_uuid(entry_id) if isinstance(entry_id, (UUID, str)) else None
        return key is not None and key in self._entries

    def read_content(self, entry_id: EntryId) -> Optional[bytes]:
        entry = self.get(entry_id)
        if entry is None:
            return None
        return entry.path.read_bytes()

    def preview(self, entry_id: EntryId) -> Optional[Preview]:
        entry = self.get(entry_id)
        if entry is None:
            return None
        return entry.preview()

    def set_content(self, entry_id: EntryId, content: str) -> Entry:
        """Replace the content of a plain text entry."""
        entry = self.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        if not entry.profile.is_text():
            raise UnsupportedContentError(entry.profile.media_type)
        try:
            self.data_store.replace(entry.id, entry.path, content.encode("utf-8"))
        except OSError as e:
            raise StorageError(f"Cannot replace content of {entry.id}: {e}") from e
        finally:
            entry.invalidate_preview()
        logger.debug(f"Replaced content of {entry.id}")
        return entry

    def delete(self, entry_id: EntryId) -> bool:
        key = _as_uuid(entry_id)
        entry = self._entries.pop(key) if key is not None else None
        if entry is None:
            return False
        self.data_store.delete(entry.id, entry.path)
        logger.debug(f"Deleted entry {entry.id}")
        return True

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def periodic_cleanup(self, now: Optional[datetime] = None) -> int:
        """Evict every entry older than the policy's maximum lifetime."""
        logger.info("start periodic cleanup now")
        now = now or utcnow()
        max_lifetime = self.policy.max_allowed_lifetime
        evicted = 0
        for entry in self._entries.snapshot():
            if entry.age(now) <= max_lifetime:
                continue
            if not self._entries.remove(entry):
                continue
            logger.debug(f"removing entry: {entry.id}")
            evicted += 1
            try:
                self.data_store.delete(entry.id, entry.path)
            except Exception as e:
                logger.warning(f"Failed to delete blob of evicted entry {entry.id}: {e}")
        logger.info(f"Periodic cleanup evicted {evicted} entries")
        return evicted

    def _cleanup_loop(self) -> None:
        period = self.policy.cleanup_period.total_seconds()
        logger.debug(f"Cleanup loop started (period={period}s)")
        while not self._stop.wait(period):
            try:
                self.periodic_cleanup()
            except Exception as e:
                logger.error(f"Periodic cleanup failed: {e}", exc_info=True)
        logger.debug("Cleanup loop stopped")

    def close(self) -> None:
        """Stop the cleanup thread and delete every remaining blob."""
        self._stop.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=self.cleanup_join_timeout)
            if self._cleanup_thread.is_alive():
                logger.warning(
                    f"Cleanup thread still running after {self.cleanup_join_timeout}s; "
                    "deleting remaining blobs while a sweep may be in progress"
                )
            self._cleanup_thread = None
        for entry in self._entries.snapshot():
            if self._entries.remove(entry):
                self.data_store.delete(entry.id, entry.path)
        logger.info("Media registry closed")

    def __enter__(self) -> "MediaRegistry":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ("MediaRegistry", "EntryMap", "BlobStore")
