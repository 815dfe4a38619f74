"""Ingestion handler for identity events.

Per request:
1. Validate the body (required fields, identifier format) → 400 on failure,
   before any storage access
2. Derive the visitor's domain from the page URL
3. Read the segment source and keep segments not yet expired (handler clock);
   read failures mean "no segments"
4. Write the event record; a failure here is a 500
5. Write the succession mapping when the identifier changed; failures are
   only logged
6. Answer with the resolved segments

The handler keeps no state between requests other than its object store.
Every storage call runs in a worker thread under a bounded timeout.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from newspassid.backend.layout import StorageLayout, domain_from_url
from newspassid.backend.records import (
    EventRecord,
    SuccessionMapping,
    render_event_csv,
    render_mapping_csv,
)
from newspassid.backend.segments import SegmentSourceReader, filter_valid_segments
from newspassid.backend.storage import ObjectStore
from newspassid.config import Settings
from newspassid.errors import StorageReadError, StorageWriteError, ValidationError
from newspassid.identity.identifiers import DEFAULT_ID_PATTERN, IdentifierFormat
from newspassid.models.enums import PathLayout, SegmentSourceScope
from newspassid.schemas import IdentityEvent, IngestionResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUIRED_FIELDS = ("id", "timestamp", "url", "consentString")

MSG_INVALID_BODY = "Invalid request body"
MSG_MISSING_FIELDS = (
    "Missing required fields. All requests must include id, timestamp, url, and consentString."
)
MSG_INVALID_ID = "Invalid ID format"
MSG_INTERNAL = "Internal server error"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class HandlerResult:
    """Status code plus response body for one ingestion request."""

    status_code: int
    response: IngestionResponse

    @classmethod
    def ok(cls, identifier: str, segments: list[str]) -> HandlerResult:
        return cls(200, IngestionResponse(success=True, id=identifier, segments=segments))

    @classmethod
    def fail(cls, status_code: int, message: str) -> HandlerResult:
        return cls(status_code, IngestionResponse(success=False, error=message))


def parse_event(body: bytes | str | None, id_format: IdentifierFormat) -> IdentityEvent:
    """Parse and validate a raw request body.

    Raises:
        ValidationError: With the client-facing message for the failure.
    """
    if body is None or (isinstance(body, (bytes, str)) and not body.strip()):
        raise ValidationError(MSG_INVALID_BODY)
    try:
        data: Any = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError(MSG_INVALID_BODY) from None
    if not isinstance(data, dict):
        raise ValidationError(MSG_INVALID_BODY)

    # A zero timestamp or empty string counts as missing
    if any(not data.get(name) for name in REQUIRED_FIELDS):
        raise ValidationError(MSG_MISSING_FIELDS)

    if not id_format.matches(data["id"]):
        raise ValidationError(MSG_INVALID_ID)
    # previousId becomes part of a storage key, so it obeys the same pattern
    previous_id = data.get("previousId")
    if previous_id and not id_format.matches(previous_id):
        raise ValidationError(MSG_INVALID_ID)

    try:
        return IdentityEvent.model_validate(data)
    except PydanticValidationError:
        raise ValidationError(MSG_INVALID_BODY) from None


class IngestionHandler:
    """Validates, persists and answers identity events.

    Args:
        store: Object store for events, mappings and segment sources.
        layout: Storage key layout.
        id_format: Identifier pattern enforced by this deployment.
        timeout_seconds: Bound on each storage call.
        clock: Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        layout: StorageLayout | None = None,
        id_format: IdentifierFormat | None = None,
        timeout_seconds: float = 5.0,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._reader = SegmentSourceReader(store)
        self._layout = layout or StorageLayout()
        self._id_format = id_format or IdentifierFormat(DEFAULT_ID_PATTERN)
        self._timeout = timeout_seconds
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: ObjectStore,
        settings: Settings,
        *,
        clock: Callable[[], int] = _now_ms,
    ) -> IngestionHandler:
        layout = StorageLayout(
            root=settings.id_folder,
            path_layout=PathLayout(settings.path_layout),
            segment_scope=SegmentSourceScope(settings.segment_source_scope),
        )
        return cls(
            store,
            layout=layout,
            id_format=IdentifierFormat(settings.id_pattern),
            timeout_seconds=settings.storage_timeout_seconds,
            clock=clock,
        )

    @property
    def layout(self) -> StorageLayout:
        return self._layout

    async def handle(self, body: bytes | str | None) -> HandlerResult:
        """Handle one ingestion request body."""
        try:
            event = parse_event(body, self._id_format)
        except ValidationError as e:
            logger.info("[INGEST] rejected: %s", e.message)
            return HandlerResult.fail(400, e.message)

        try:
            return await self._ingest(event)
        except StorageWriteError as e:
            logger.error("[INGEST] event write failed for %s: %s", event.id, e)
            return HandlerResult.fail(500, MSG_INTERNAL)
        except Exception:
            logger.exception("[INGEST] unexpected failure for %s", event.id)
            return HandlerResult.fail(500, MSG_INTERNAL)

    async def _ingest(self, event: IdentityEvent) -> HandlerResult:
        namespace = self._id_format.namespace_of(event.id)
        domain = domain_from_url(event.url)

        segments = await self._valid_segments(namespace, domain, event.id)

        event_key = self._layout.event_key(namespace, domain, event.id, event.timestamp)
        record = EventRecord(event=event, segments=segments)
        await self._write(event_key, render_event_csv(record))

        if event.previous_id and event.previous_id != event.id:
            mapping = SuccessionMapping(
                old_id=event.previous_id, new_id=event.id, timestamp=event.timestamp
            )
            mapping_key = self._layout.mapping_key(namespace, event.previous_id)
            try:
                await self._write(mapping_key, render_mapping_csv(mapping))
            except StorageWriteError as e:
                logger.warning("[INGEST] mapping write failed (%s), continuing", e)

        logger.info(
            "[INGEST] %s @ %s → %d segment(s), stored %s",
            event.id, domain, len(segments), event_key
        )
        return HandlerResult.ok(event.id, segments)

    async def _valid_segments(self, namespace: str, domain: str, identifier: str) -> list[str]:
        key = self._layout.segments_key(namespace, domain, identifier)
        try:
            records = await self._call(self._reader.read, key)
        except StorageReadError as e:
            logger.warning("[SEGMENTS] %s", e)
            return []
        except TimeoutError:
            logger.warning("[SEGMENTS] read %s timed out after %.1fs", key, self._timeout)
            return []
        # Evaluated against the handler's clock, never the client's
        return filter_valid_segments(records, self._clock())

    async def _write(self, key: str, content: str) -> None:
        try:
            await self._call(self._store.write_text, key, content, "text/csv")
        except TimeoutError as e:
            raise StorageWriteError(key, f"timed out after {self._timeout}s") from e
        except Exception as e:
            raise StorageWriteError(key, str(e)) from e

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self._timeout)
