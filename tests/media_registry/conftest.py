"""Shared fixtures for media registry tests."""

from __future__ import annotations

import contextlib
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import pytest

from Switchboard.MediaRegistry.config.models import HttpClientConfig
from Switchboard.MediaRegistry.models import Profile
from Switchboard.MediaRegistry.net.client import build_http_client
from Switchboard.MediaRegistry.policy import StoragePolicy
from Switchboard.MediaRegistry.profiler import MediaTypeProfiler
from Switchboard.MediaRegistry.registry import MediaRegistry
from Switchboard.MediaRegistry.storage import DataStore


class StaticProfiler:
    """Profiler returning fixed results (or raising a fixed error)."""

    def __init__(
        self,
        profiles: Optional[List[Profile]] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self.profiles = profiles if profiles is not None else [Profile("text/plain")]
        self.error = error
        self.calls: list[Path] = []

    def profile(self, path: Path) -> List[Profile]:
        self.calls.append(Path(path))
        if self.error is not None:
            raise self.error
        return list(self.profiles)


def _unexpected_request(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


def stored_blobs(data_store: DataStore) -> list[Path]:
    return sorted(data_store.root.iterdir())


@pytest.fixture
def data_store(tmp_path: Path) -> DataStore:
    return DataStore(tmp_path / "store")


@pytest.fixture
def mock_client():
    """Build HTTPX clients backed by ``httpx.MockTransport``."""

    created: list[httpx.Client] = []

    def _build(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = build_http_client(HttpClientConfig(), transport=httpx.MockTransport(handler))
        created.append(client)
        return client

    yield _build

    for client in created:
        with contextlib.suppress(Exception):
            client.close()


@pytest.fixture
def make_registry(data_store: DataStore, mock_client):
    """Factory for registries sharing the ``data_store`` fixture."""

    created: list[MediaRegistry] = []

    def _make(
        *,
        profiler=None,
        policy: Optional[StoragePolicy] = None,
        handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
        store: Optional[DataStore] = None,
        start_cleanup: bool = False,
    ) -> MediaRegistry:
        registry = MediaRegistry(
            store or data_store,
            profiler or MediaTypeProfiler(),
            policy or StoragePolicy(),
            mock_client(handler or _unexpected_request),
            start_cleanup=start_cleanup,
        )
        created.append(registry)
        return registry

    yield _make

    for registry in created:
        registry.close()


@pytest.fixture
def static_profiler():
    return StaticProfiler


@pytest.fixture
def blobs(data_store: DataStore) -> Callable[[], list[Path]]:
    return lambda: stored_blobs(data_store)
