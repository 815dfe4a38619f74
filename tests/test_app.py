"""Tests for the FastAPI application."""

import pytest
from httpx import ASGITransport, AsyncClient

from newspassid import __version__
from newspassid.app import create_app
from newspassid.backend.handler import MSG_INTERNAL, MSG_INVALID_BODY, MSG_MISSING_FIELDS
from newspassid.config import Settings


@pytest.fixture
async def api(handler):
    app = create_app(handler=handler)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def test_health(api) -> None:
    response = await api.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__}


async def test_health_has_cors_headers(api) -> None:
    response = await api.get("/health", headers={"Origin": "https://news.example"})
    assert response.headers["access-control-allow-origin"] == "https://news.example"
    assert response.headers["access-control-allow-credentials"] == "true"


class TestIngestEndpoint:
    """Test POST/OPTIONS on the ingest path."""

    async def test_post_success(self, api, write_segments, make_event, now_ms):
        write_segments([("sports", now_ms + 60_000)])
        response = await api.post(
            "/newspassid", json=make_event(), headers={"Origin": "https://www.example.com"}
        )
        assert response.status_code == 200
        assert response.json() == {"success": True, "id": "publisher-2", "segments": ["sports"]}
        assert response.headers["access-control-allow-origin"] == "https://www.example.com"
        assert response.headers["access-control-allow-credentials"] == "true"

    async def test_post_missing_fields(self, api, make_event):
        response = await api.post("/newspassid", json=make_event(consentString=None))
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": MSG_MISSING_FIELDS}
        assert response.headers["access-control-allow-origin"] == "*"

    async def test_post_empty_body(self, api):
        response = await api.post("/newspassid", content=b"")
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": MSG_INVALID_BODY}

    async def test_post_storage_failure(self, handler, object_store, make_event, monkeypatch):
        def _fail(*args, **kwargs):
            raise OSError("read-only file system")

        monkeypatch.setattr(object_store, "write_text", _fail)
        app = create_app(handler=handler)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/newspassid", json=make_event())
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Internal server error"}

    async def test_preflight(self, api):
        response = await api.options("/newspassid", headers={"Origin": "https://news.example"})
        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "https://news.example"
        assert response.headers["access-control-allow-methods"] == "POST,OPTIONS"
        assert response.headers["access-control-allow-headers"] == "Content-Type,Authorization"

    async def test_unbuildable_handler_is_500_with_cors(self, make_event):
        """An s3 backend without a bucket fails per request, not at import."""
        app = create_app(Settings(storage_backend="s3", storage_bucket=None))
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post(
                "/newspassid", json=make_event(), headers={"Origin": "https://www.example.com"}
            )
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": MSG_INTERNAL}
        assert response.headers["access-control-allow-origin"] == "https://www.example.com"
