"""Row types and CSV serialization for stored ingestion records."""

from __future__ import annotations

import csv
import io
from collections.abc import Sequence
from dataclasses import dataclass, field

from newspassid.schemas import IdentityEvent

EVENT_HEADER = (
    "id",
    "timestamp",
    "url",
    "consentString",
    "previousId",
    "segments",
    "publisherSegments",
)
MAPPING_HEADER = ("oldId", "newId", "timestamp")

LIST_DELIMITER = "|"


@dataclass(frozen=True)
class SegmentRecord:
    """One row of a segment source: a segment name and its expiry (epoch ms)."""

    segment: str
    expire_timestamp: int

    def is_valid_at(self, now_ms: int) -> bool:
        return self.expire_timestamp > now_ms


@dataclass(frozen=True)
class EventRecord:
    """An identity event as persisted, with the segments resolved for it."""

    event: IdentityEvent
    segments: Sequence[str] = field(default_factory=tuple)

    def to_row(self) -> list[str]:
        return [
            self.event.id,
            str(self.event.timestamp),
            self.event.url,
            self.event.consent_string,
            self.event.previous_id or "",
            LIST_DELIMITER.join(self.segments),
            LIST_DELIMITER.join(self.event.publisher_segments or []),
        ]


@dataclass(frozen=True)
class SuccessionMapping:
    """Links a superseded identifier to its replacement."""

    old_id: str
    new_id: str
    timestamp: int

    def to_row(self) -> list[str]:
        return [self.old_id, self.new_id, str(self.timestamp)]


def _render(header: Sequence[str], row: Sequence[str]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(header)
    writer.writerow(row)
    return buffer.getvalue()


def render_event_csv(record: EventRecord) -> str:
    return _render(EVENT_HEADER, record.to_row())


def render_mapping_csv(mapping: SuccessionMapping) -> str:
    return _render(MAPPING_HEADER, mapping.to_row())


def parse_rows(content: str) -> list[dict[str, str]]:
    """Parse a stored CSV record back into header-keyed dicts."""
    return list(csv.DictReader(io.StringIO(content)))
