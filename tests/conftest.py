"""Shared pytest fixtures for NewsPassID tests."""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from newspassid.backend.handler import IngestionHandler
from newspassid.backend.storage import LocalObjectStore
from newspassid.client.lifecycle import ClientConfig
from newspassid.client.page import Page
from newspassid.client.store import LocalIdentifierStore

# Frozen handler clock (2025-06-15T15:06:40Z) so expiry filtering is deterministic
NOW_MS = 1_750_000_000_000

ENDPOINT = "https://npid.test/newspassid"


@pytest.fixture
def now_ms() -> int:
    return NOW_MS


@pytest.fixture
def object_store(tmp_path: Path) -> LocalObjectStore:
    """Filesystem object store rooted in a temporary directory."""
    return LocalObjectStore(tmp_path / "bucket")


@pytest.fixture
def handler(object_store: LocalObjectStore) -> IngestionHandler:
    """Ingestion handler with default layout and a frozen clock."""
    return IngestionHandler(object_store, clock=lambda: NOW_MS)


WriteSegments = Callable[..., str]


@pytest.fixture
def write_segments(object_store: LocalObjectStore) -> WriteSegments:
    """Write a segment source table; returns its key."""

    def _write(
        rows: list[tuple[str, Any]],
        *,
        key: str = "newspassid/publisher/segments.csv",
        header: str = "segments,expire_timestamp",
    ) -> str:
        lines = [header] + [f"{name},{expiry}" for name, expiry in rows]
        object_store.write_text(key, "\n".join(lines) + "\n")
        return key

    return _write


MakeEvent = Callable[..., dict[str, Any]]


@pytest.fixture
def make_event() -> MakeEvent:
    """Factory fixture for identity event payloads (wire format)."""

    def _make(**overrides: Any) -> dict[str, Any]:
        event: dict[str, Any] = {
            "id": "publisher-2",
            "timestamp": NOW_MS - 5_000,
            "url": "https://www.example.com/news/article",
            "consentString": "DBABMA~CPXxRfAPXxRfAAfKABENB-CgAAAAAAAAAAYgAAAAAAAA",
        }
        event.update(overrides)
        return {k: v for k, v in event.items() if v is not None}

    return _make


@pytest.fixture
async def identifier_store(tmp_path: Path) -> AsyncGenerator[LocalIdentifierStore, None]:
    """Local identifier store backed by a temporary SQLite file."""
    store = await LocalIdentifierStore.open(f"sqlite+aiosqlite:///{tmp_path / 'client.db'}")
    yield store
    await store.aclose()


@pytest.fixture
def page() -> Page:
    return Page(url="https://www.example.com/news/article")


@pytest.fixture
def client_config() -> ClientConfig:
    return ClientConfig(namespace="publisher", endpoint_url=ENDPOINT)


class RecordingBackend:
    """httpx MockTransport handler that records requests and replies from a script."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.segments: list[str] | None = []
        self.status_code = 200
        self.fail_with: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail_with is not None:
            raise self.fail_with
        payload = json.loads(request.content)
        self.requests.append(payload)
        if self.status_code != 200:
            return httpx.Response(
                self.status_code, json={"success": False, "error": "Internal server error"}
            )
        body: dict[str, Any] = {"success": True, "id": payload["id"]}
        if self.segments is not None:
            body["segments"] = self.segments
        return httpx.Response(200, json=body)


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
async def http_client(backend: RecordingBackend) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as client:
        yield client
