"""Tests for the ingestion pipeline of the media registry.

Covers rollback on every failure path, lookup semantics, content
replacement and archive extraction.
"""

from __future__ import annotations

import io
import logging
import tarfile
import threading
import uuid
import zipfile
from datetime import timedelta
from pathlib import Path

import httpx
import pytest

from Switchboard.MediaRegistry.config.models import MediaRegistryConfig, StorageConfig
from Switchboard.MediaRegistry.errors import (
    ArchiveError,
    ClassificationError,
    DataStreamError,
    EntryNotFoundError,
    PolicyRejectedError,
    StatusError,
    StorageError,
    UnsupportedContentError,
)
from Switchboard.MediaRegistry.models import (
    MAX_INLINE_CONTENT,
    ArchiveSource,
    LinkSource,
    Profile,
)
from Switchboard.MediaRegistry.policy import StoragePolicy
from Switchboard.MediaRegistry.registry import MediaRegistry
from Switchboard.MediaRegistry.storage import DataStore


class _FailingSaveStore(DataStore):
    def save(self, entry_id, filename, stream):
        raise OSError("disk full")


def _zip_bytes(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def _tar_bytes(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class TestAddFile:
    """Upload ingestion and rollback."""

    def test_hello_world_scenario(self, make_registry, static_profiler):
        registry = make_registry(profiler=static_profiler([Profile("text/plain")]))

        entry = registry.add_file("a.txt", io.BytesIO(b"hello"))

        found = registry.get(entry.id)
        assert found is entry
        assert found.filename == "a.txt"
        assert found.profile.media_type == "text/plain"
        assert found.age() >= timedelta(0)

        registry.set_content(entry.id, "world")

        assert registry.read_content(entry.id) == b"world"
        assert registry.get(entry.id).id == entry.id
        assert registry.get(entry.id).filename == "a.txt"

    def test_alternate_profiles_kept_in_order(self, make_registry, static_profiler):
        profiles = [Profile("text/plain"), Profile("text/x-tcf"), Profile("text/csv")]
        registry = make_registry(profiler=static_profiler(profiles))

        entry = registry.add_file("a.txt", io.BytesIO(b"hello"))

        assert entry.profile is profiles[0]
        assert entry.alternatives == (profiles[1], profiles[2])

    def test_filename_is_sanitized(self, make_registry):
        registry = make_registry()

        entry = registry.add_file("../../secret/notes.txt", io.BytesIO(b"x"))

        assert entry.filename == "notes.txt"
        assert entry.path.parent.name == str(entry.id)

    def test_empty_profiling_result_fails_without_orphans(
        self, make_registry, static_profiler, blobs
    ):
        registry = make_registry(profiler=static_profiler([]))

        with pytest.raises(ClassificationError):
            registry.add_file("a.txt", io.BytesIO(b"hello"))

        assert blobs() == []
        assert len(registry) == 0

    def test_profiler_error_propagates_and_rolls_back(
        self, make_registry, static_profiler, blobs
    ):
        error = ClassificationError("unknown format")
        registry = make_registry(profiler=static_profiler(error=error))

        with pytest.raises(ClassificationError) as excinfo:
            registry.add_file("a.bin", io.BytesIO(b"\x00\x01"))

        assert excinfo.value is error
        assert blobs() == []

    def test_profiler_io_error_is_storage_error(self, make_registry, static_profiler, blobs):
        registry = make_registry(profiler=static_profiler(error=OSError("unreadable")))

        with pytest.raises(StorageError):
            registry.add_file("a.txt", io.BytesIO(b"hello"))

        assert blobs() == []

    def test_unexpected_profiler_failure_still_rolls_back(
        self, make_registry, static_profiler, blobs
    ):
        registry = make_registry(profiler=static_profiler(error=RuntimeError("bug")))

        with pytest.raises(RuntimeError):
            registry.add_file("a.txt", io.BytesIO(b"hello"))

        assert blobs() == []
        assert registry.entries() == []

    def test_policy_rejection_rolls_back(self, make_registry, static_profiler, blobs):
        policy = StoragePolicy(denied_media_types=frozenset({"text/plain"}))
        registry = make_registry(profiler=static_profiler(), policy=policy)

        with pytest.raises(PolicyRejectedError) as excinfo:
            registry.add_file("a.txt", io.BytesIO(b"hello"))

        assert "text/plain" in excinfo.value.reason
        assert blobs() == []
        assert registry.entries() == []

    def test_storage_failure_raises_storage_error(self, make_registry, tmp_path):
        registry = make_registry(store=_FailingSaveStore(tmp_path / "failing"))

        with pytest.raises(StorageError):
            registry.add_file("a.txt", io.BytesIO(b"hello"))

        assert len(registry) == 0

    def test_profile_override_skips_profiler(self, make_registry, static_profiler):
        profiler = static_profiler()
        registry = make_registry(profiler=profiler)

        entry = registry.add_file(
            "data.cmdi", io.BytesIO(b"<cmd/>"), Profile("application/x-cmdi+xml")
        )

        assert profiler.calls == []
        assert entry.profile.media_type == "application/x-cmdi+xml"
        assert entry.alternatives == ()

    def test_identities_are_unique_across_deletion(self, make_registry):
        registry = make_registry()
        seen = set()

        for _ in range(10):
            entry = registry.add_file("same.txt", io.BytesIO(b"same content"))
            assert entry.id not in seen
            seen.add(entry.id)
            assert registry.delete(entry.id)

        assert len(seen) == 10

    def test_entry_is_invisible_until_pipeline_completes(self, make_registry):
        entered = threading.Event()
        release = threading.Event()

        class _BlockingProfiler:
            def profile(self, path):
                entered.set()
                assert release.wait(5)
                return [Profile("text/plain")]

        registry = make_registry(profiler=_BlockingProfiler())
        result: dict[str, object] = {}

        def _ingest():
            result["entry"] = registry.add_file("a.txt", io.BytesIO(b"hello"))

        worker = threading.Thread(target=_ingest)
        worker.start()
        assert entered.wait(5)

        assert registry.entries() == []

        release.set()
        worker.join(5)
        assert registry.get(result["entry"].id) is result["entry"]


class TestLookupAndMutation:
    """Lookup, deletion, previews and content replacement."""

    def test_lookup_unknown_returns_none(self, make_registry):
        registry = make_registry()

        assert registry.get(uuid.uuid4()) is None
        assert registry.get("not-a-uuid") is None
        assert registry.read_content(uuid.uuid4()) is None
        assert registry.preview("not-a-uuid") is None

    def test_lookup_accepts_string_ids(self, make_registry):
        registry = make_registry()
        entry = registry.add_file("a.txt", io.BytesIO(b"hello"))

        assert registry.get(str(entry.id)) is entry
        assert str(entry.id) in registry

    def test_delete_removes_entry_and_blob(self, make_registry, blobs):
        registry = make_registry()
        entry = registry.add_file("a.txt", io.BytesIO(b"hello"))

        assert registry.delete(entry.id) is True
        assert registry.get(entry.id) is None
        assert blobs() == []
        assert registry.delete(entry.id) is False

    def test_preview_is_truncated_and_refreshed_after_replacement(self, make_registry):
        registry = make_registry()
        entry = registry.add_file("big.txt", io.BytesIO(b"a" * (MAX_INLINE_CONTENT + 10)))

        preview = registry.preview(entry.id)
        assert preview.is_incomplete is True
        assert len(preview.content) == MAX_INLINE_CONTENT

        registry.set_content(entry.id, "short")

        preview = registry.preview(entry.id)
        assert preview.content == "short"
        assert preview.is_incomplete is False

    def test_set_content_rejects_non_text_entries(self, make_registry, static_profiler):
        registry = make_registry(profiler=static_profiler([Profile("application/pdf")]))
        entry = registry.add_file("paper.pdf", io.BytesIO(b"%PDF-1.4"))

        with pytest.raises(UnsupportedContentError):
            registry.set_content(entry.id, "text")

        assert registry.read_content(entry.id) == b"%PDF-1.4"

    def test_set_content_unknown_entry(self, make_registry):
        registry = make_registry()

        with pytest.raises(EntryNotFoundError):
            registry.set_content(uuid.uuid4(), "text")

    def test_close_removes_all_blobs(self, make_registry, blobs):
        registry = make_registry()
        registry.add_file("a.txt", io.BytesIO(b"a"))
        registry.add_file("b.txt", io.BytesIO(b"b"))

        registry.close()

        assert len(registry) == 0
        assert blobs() == []


class TestAddByUrl:
    """Downloads through the registry."""

    def test_doi_download_records_provenance(self, make_registry):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "doi.org":
                return httpx.Response(
                    302,
                    headers={
                        "Location": "https://repo.example.org/files/42",
                        "Set-Cookie": "JSESSIONID=abc; Path=/",
                    },
                )
            assert request.headers.get("cookie") == "JSESSIONID=abc"
            return httpx.Response(
                200,
                headers={"Content-Disposition": 'attachment; filename="corpus.txt"'},
                content=b"hello doi",
            )

        registry = make_registry(handler=handler)

        entry = registry.add_by_url("doi:10.1234/abc")

        assert entry.filename == "corpus.txt"
        assert entry.profile.media_type == "text/plain"
        assert entry.source == LinkSource(
            "doi:10.1234/abc", "https://repo.example.org/files/42", 1
        )
        assert registry.read_content(entry.id) == b"hello doi"

    def test_url_filename_used_without_disposition(self, make_registry):
        registry = make_registry(
            handler=lambda request: httpx.Response(200, content=b"hello")
        )

        entry = registry.add_by_url("https://example.org/texts/story.txt")

        assert entry.filename == "story.txt"
        assert entry.source.redirects == 0

    def test_status_error_stores_nothing(self, make_registry, blobs):
        registry = make_registry(handler=lambda request: httpx.Response(404))

        with pytest.raises(StatusError) as excinfo:
            registry.add_by_url("https://example.org/missing.txt")

        assert excinfo.value.status == 404
        assert blobs() == []

    def test_broken_body_rolls_back(self, make_registry, blobs):
        class _BrokenStream(httpx.SyncByteStream):
            def __iter__(self):
                yield b"partial"
                raise httpx.ReadError("connection reset")

        registry = make_registry(
            handler=lambda request: httpx.Response(200, stream=_BrokenStream())
        )

        with pytest.raises(DataStreamError):
            registry.add_by_url("https://example.org/file.txt")

        assert blobs() == []
        assert len(registry) == 0

    def test_policy_rejection_after_download(self, make_registry, blobs):
        policy = StoragePolicy(allowed_media_types=frozenset({"application/pdf"}))
        registry = make_registry(
            policy=policy, handler=lambda request: httpx.Response(200, content=b"plain")
        )

        with pytest.raises(PolicyRejectedError):
            registry.add_by_url("https://example.org/file.txt")

        assert blobs() == []


class TestAddFromArchive:
    """Extraction of archive members."""

    def test_zip_member_is_registered(self, make_registry):
        registry = make_registry()
        archive = registry.add_file(
            "bundle.zip", io.BytesIO(_zip_bytes({"docs/inner.txt": b"inside"}))
        )
        assert archive.profile.media_type == "application/zip"

        entry = registry.add_from_archive(archive.id, "docs/inner.txt")

        assert entry.filename == "inner.txt"
        assert entry.profile.media_type == "text/plain"
        assert entry.source == ArchiveSource(archive.id, "docs/inner.txt")
        assert registry.read_content(entry.id) == b"inside"
        assert entry.id != archive.id

    def test_tar_member_is_registered(self, make_registry):
        registry = make_registry()
        archive = registry.add_file(
            "bundle.tar", io.BytesIO(_tar_bytes({"a/b.txt": b"from tar"}))
        )
        assert archive.profile.media_type == "application/x-tar"

        entry = registry.add_from_archive(str(archive.id), "a/b.txt")

        assert registry.read_content(entry.id) == b"from tar"

    def test_damaged_member_body_is_archive_error(self, make_registry, blobs):
        registry = make_registry()
        intact = _zip_bytes({"a.txt": b"hello archive"})
        damaged = intact.replace(b"hello archive", b"hellO archive")
        archive = registry.add_file("bundle.zip", io.BytesIO(damaged))
        before = blobs()

        with pytest.raises(ArchiveError):
            registry.add_from_archive(archive.id, "a.txt")

        assert blobs() == before
        assert len(registry) == 1

    def test_missing_member_leaves_no_blob(self, make_registry, blobs):
        registry = make_registry()
        archive = registry.add_file("bundle.zip", io.BytesIO(_zip_bytes({"a.txt": b"a"})))
        before = blobs()

        with pytest.raises(ArchiveError):
            registry.add_from_archive(archive.id, "missing.txt")

        assert blobs() == before
        assert len(registry) == 1

    def test_non_archive_parent(self, make_registry):
        registry = make_registry()
        entry = registry.add_file("a.txt", io.BytesIO(b"hello"))

        with pytest.raises(ArchiveError):
            registry.add_from_archive(entry.id, "a.txt")

    def test_unknown_parent(self, make_registry):
        registry = make_registry()

        with pytest.raises(EntryNotFoundError):
            registry.add_from_archive(uuid.uuid4(), "a.txt")

    def test_member_profile_override(self, make_registry):
        registry = make_registry()
        archive = registry.add_file("bundle.zip", io.BytesIO(_zip_bytes({"a.txt": b"a"})))

        entry = registry.add_from_archive(archive.id, "a.txt", Profile("text/x-custom"))

        assert entry.profile.media_type == "text/x-custom"


def test_entry_to_dict_hides_path(make_registry):
    registry = make_registry()
    entry = registry.add_file("a.txt", io.BytesIO(b"hello"))

    data = entry.to_dict()

    assert data["id"] == str(entry.id)
    assert data["filename"] == "a.txt"
    assert data["profile"]["mediaType"] == "text/plain"
    assert "path" not in data
    assert isinstance(entry.path, Path)


def test_from_config_logs_instance(tmp_path, mock_client, caplog):
    config = MediaRegistryConfig(
        instance_id="corpus-a", storage=StorageConfig(root_dir=str(tmp_path / "configured"))
    )

    with caplog.at_level(logging.INFO, logger="Switchboard.MediaRegistry.registry"):
        registry = MediaRegistry.from_config(
            config,
            client=mock_client(lambda request: httpx.Response(500)),
            start_cleanup=False,
        )

    try:
        assert "corpus-a" in caplog.text
        assert registry.data_store.root == tmp_path / "configured"
    finally:
        registry.close()
