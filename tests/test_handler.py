"""Tests for the ingestion handler.

Covers validation (400 before any storage access), segment resolution with
the handler's clock, event/mapping persistence, and failure handling.
"""

import json
import threading
from unittest.mock import MagicMock

import pytest

from newspassid.backend.handler import (
    MSG_INTERNAL,
    MSG_INVALID_BODY,
    MSG_INVALID_ID,
    MSG_MISSING_FIELDS,
    IngestionHandler,
    parse_event,
)
from newspassid.backend.records import parse_rows
from newspassid.config import Settings
from newspassid.errors import ValidationError
from newspassid.identity.identifiers import DEFAULT_ID_PATTERN, IdentifierFormat

EVENT_KEY = "newspassid/publisher/example.com/publisher-2/{ts}.csv"
MAPPING_KEY = "newspassid/publisher/mappings/publisher-1.csv"


def _body(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


class TestParseEvent:
    """Test request body validation."""

    fmt = IdentifierFormat(DEFAULT_ID_PATTERN)

    @pytest.mark.parametrize("body", [None, b"", "   ", b"{not json", b"[1, 2]", b"\x80\x81"])
    def test_invalid_body(self, body):
        with pytest.raises(ValidationError) as exc_info:
            parse_event(body, self.fmt)
        assert exc_info.value.message == MSG_INVALID_BODY

    @pytest.mark.parametrize(
        "overrides",
        [{"id": None}, {"timestamp": None}, {"url": None}, {"consentString": None},
         {"consentString": ""}, {"timestamp": 0}],
    )
    def test_missing_fields(self, make_event, overrides):
        with pytest.raises(ValidationError) as exc_info:
            parse_event(_body(make_event(**overrides)), self.fmt)
        assert exc_info.value.message == MSG_MISSING_FIELDS

    @pytest.mark.parametrize("identifier", ["publisher", "a-b-c", "pub-lisher-2", "pub-x!"])
    def test_invalid_id(self, make_event, identifier):
        with pytest.raises(ValidationError) as exc_info:
            parse_event(_body(make_event(id=identifier)), self.fmt)
        assert exc_info.value.message == MSG_INVALID_ID

    def test_invalid_previous_id(self, make_event):
        """previousId must follow the identifier pattern too."""
        payload = make_event(previousId="../../etc-passwd")
        with pytest.raises(ValidationError) as exc_info:
            parse_event(_body(payload), self.fmt)
        assert exc_info.value.message == MSG_INVALID_ID

    def test_wrong_types(self, make_event):
        with pytest.raises(ValidationError) as exc_info:
            parse_event(_body(make_event(timestamp="yesterday")), self.fmt)
        assert exc_info.value.message == MSG_INVALID_BODY

    def test_valid(self, make_event):
        event = parse_event(_body(make_event(publisherSegments=["p1"])), self.fmt)
        assert event.id == "publisher-2"
        assert event.previous_id is None
        assert event.publisher_segments == ["p1"]


class TestIngestionHandler:
    """Test IngestionHandler.handle end to end on a local store."""

    async def test_success_without_segment_source(self, handler, object_store, make_event):
        payload = make_event()
        result = await handler.handle(_body(payload))

        assert result.status_code == 200
        assert result.response.to_wire() == {"success": True, "id": "publisher-2", "segments": []}
        key = EVENT_KEY.format(ts=payload["timestamp"])
        [row] = parse_rows(object_store.read_text(key))
        assert row["id"] == "publisher-2"
        assert row["url"] == payload["url"]
        assert row["consentString"] == payload["consentString"]
        assert row["segments"] == ""

    async def test_expired_segments_filtered(self, handler, write_segments, make_event, now_ms):
        write_segments([("segA", now_ms + 1000), ("segB", now_ms - 1000)])
        result = await handler.handle(_body(make_event()))
        assert result.status_code == 200
        assert result.response.segments == ["segA"]

    async def test_handler_clock_decides_expiry(self, handler, write_segments, make_event, now_ms):
        """A client timestamp far in the past does not revive expired segments."""
        write_segments([("old", now_ms - 1), ("fresh", now_ms + 1)])
        result = await handler.handle(_body(make_event(timestamp=1)))
        assert result.response.segments == ["fresh"]

    async def test_segments_recorded_with_event(
        self, handler, object_store, write_segments, make_event, now_ms
    ):
        write_segments([("s1", now_ms + 10), ("s2", now_ms + 20)])
        payload = make_event(publisherSegments=["p1"])
        await handler.handle(_body(payload))
        [row] = parse_rows(object_store.read_text(EVENT_KEY.format(ts=payload["timestamp"])))
        assert row["segments"] == "s1|s2"
        assert row["publisherSegments"] == "p1"

    async def test_unparseable_url_goes_to_unknown(self, handler, object_store, make_event):
        payload = make_event(url="not a url")
        result = await handler.handle(_body(payload))
        assert result.status_code == 200
        assert object_store.exists(
            f"newspassid/publisher/unknown/publisher-2/{payload['timestamp']}.csv"
        )

    async def test_dot_hostname_stays_in_partition(self, handler, object_store, make_event):
        payload = make_event(url="http://../x")
        result = await handler.handle(_body(payload))
        assert result.status_code == 200
        assert object_store.list_keys("newspassid/") == [
            f"newspassid/publisher/unknown/publisher-2/{payload['timestamp']}.csv"
        ]

    async def test_mapping_written_when_id_changes(self, handler, object_store, make_event):
        payload = make_event(previousId="publisher-1")
        result = await handler.handle(_body(payload))
        assert result.status_code == 200
        assert parse_rows(object_store.read_text(MAPPING_KEY)) == [
            {"oldId": "publisher-1", "newId": "publisher-2", "timestamp": str(payload["timestamp"])}
        ]

    async def test_no_mapping_when_previous_id_same(self, handler, object_store, make_event):
        await handler.handle(_body(make_event(previousId="publisher-2")))
        assert object_store.list_keys("newspassid/publisher/mappings/") == []

    async def test_no_mapping_without_previous_id(self, handler, object_store, make_event):
        await handler.handle(_body(make_event()))
        assert object_store.list_keys("newspassid/publisher/mappings/") == []

    async def test_same_timestamp_overwrites(self, handler, object_store, make_event):
        """Two events for one id/timestamp leave one record: the last write."""
        await handler.handle(_body(make_event(consentString="first")))
        await handler.handle(_body(make_event(consentString="second")))
        keys = object_store.list_keys("newspassid/publisher/example.com/publisher-2/")
        assert len(keys) == 1
        [row] = parse_rows(object_store.read_text(keys[0]))
        assert row["consentString"] == "second"

    async def test_validation_failure_touches_no_storage(self, make_event):
        store = MagicMock()
        handler = IngestionHandler(store)
        result = await handler.handle(_body(make_event(id="bad")))
        assert result.status_code == 400
        assert result.response.to_wire() == {"success": False, "error": MSG_INVALID_ID}
        assert store.method_calls == []

    async def test_missing_fields_response(self, handler, make_event):
        result = await handler.handle(_body(make_event(url=None)))
        assert result.status_code == 400
        assert result.response.error == MSG_MISSING_FIELDS

    async def test_event_write_failure_is_500(self, make_event):
        store = MagicMock()
        store.read_text.side_effect = FileNotFoundError
        store.write_text.side_effect = OSError("disk full")
        handler = IngestionHandler(store)
        result = await handler.handle(_body(make_event()))
        assert result.status_code == 500
        assert result.response.to_wire() == {"success": False, "error": MSG_INTERNAL}

    async def test_mapping_write_failure_still_succeeds(self, make_event):
        store = MagicMock()
        store.read_text.side_effect = FileNotFoundError

        def _write(key, content, content_type="text/csv"):
            if "/mappings/" in key:
                raise OSError("denied")
            return key

        store.write_text.side_effect = _write
        handler = IngestionHandler(store)
        result = await handler.handle(_body(make_event(previousId="publisher-1")))
        assert result.status_code == 200
        assert store.write_text.call_count == 2

    async def test_segment_read_failure_means_no_segments(self, make_event):
        store = MagicMock()
        store.read_text.side_effect = PermissionError("denied")
        store.write_text.return_value = "loc"
        handler = IngestionHandler(store)
        result = await handler.handle(_body(make_event()))
        assert result.status_code == 200
        assert result.response.segments == []

    async def test_unparseable_segment_source_means_no_segments(
        self, handler, object_store, make_event
    ):
        object_store.write_text(
            "newspassid/publisher/segments.csv",
            f'segments,expire_timestamp\n"{"x" * 200_000}",1\nok,99999999999999\n',
        )
        payload = make_event()
        result = await handler.handle(_body(payload))
        assert result.status_code == 200
        assert result.response.segments == []
        assert object_store.exists(EVENT_KEY.format(ts=payload["timestamp"]))

    async def test_malformed_segment_source_means_no_segments(self, handler, object_store, make_event):
        object_store.write_text("newspassid/publisher/segments.csv", "name,when\nx,1\n")
        result = await handler.handle(_body(make_event()))
        assert result.status_code == 200
        assert result.response.segments == []

    async def test_segment_read_timeout_means_no_segments(self, make_event):
        release = threading.Event()

        def _slow_read(key):
            release.wait(2)
            raise FileNotFoundError(key)

        store = MagicMock()
        store.read_text.side_effect = _slow_read
        store.write_text.return_value = "loc"
        handler = IngestionHandler(store, timeout_seconds=0.05)
        try:
            result = await handler.handle(_body(make_event()))
        finally:
            release.set()
        assert result.status_code == 200
        assert result.response.segments == []
        store.write_text.assert_called_once()

    async def test_event_write_timeout_is_500(self, make_event):
        release = threading.Event()

        def _slow_write(key, content, content_type="text/csv"):
            release.wait(2)
            return key

        store = MagicMock()
        store.read_text.side_effect = FileNotFoundError
        store.write_text.side_effect = _slow_write
        handler = IngestionHandler(store, timeout_seconds=0.05)
        try:
            result = await handler.handle(_body(make_event()))
        finally:
            release.set()
        assert result.status_code == 500
        assert result.response.to_wire() == {"success": False, "error": MSG_INTERNAL}

    async def test_mapping_write_timeout_still_succeeds(self, make_event):
        release = threading.Event()

        def _write(key, content, content_type="text/csv"):
            if "/mappings/" in key:
                release.wait(2)
            return key

        store = MagicMock()
        store.read_text.side_effect = FileNotFoundError
        store.write_text.side_effect = _write
        handler = IngestionHandler(store, timeout_seconds=0.05)
        try:
            result = await handler.handle(_body(make_event(previousId="publisher-1")))
        finally:
            release.set()
        assert result.status_code == 200
        assert result.response.id == "publisher-2"


class TestFromSettings:
    """Test IngestionHandler.from_settings."""

    async def test_publisher_layout_and_pattern(self, object_store, make_event, now_ms):
        settings = Settings(
            id_folder="ids",
            path_layout="publisher",
            id_pattern=r"^(?P<namespace>acme)-\d+$",
        )
        handler = IngestionHandler.from_settings(object_store, settings, clock=lambda: now_ms)
        assert handler.layout.partition("acme") == "ids/publisher"

        rejected = await handler.handle(_body(make_event(id="publisher-2")))
        assert rejected.status_code == 400

        payload = make_event(id="acme-7")
        accepted = await handler.handle(_body(payload))
        assert accepted.status_code == 200
        assert object_store.exists(f"ids/publisher/example.com/acme-7/{payload['timestamp']}.csv")
