"""Segment source reading and expiry filtering.

A segment source is a CSV table maintained by the enrichment job::

    segments,expire_timestamp
    sports_fan,1893456000000
    commuter,1700000000000

The reader only parses; filtering by the current time is done separately
with ``filter_valid_segments`` so parsing can be tested against frozen
fixtures.
"""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Iterable

from newspassid.backend.records import SegmentRecord
from newspassid.backend.storage import ObjectStore
from newspassid.errors import StorageReadError

logger = logging.getLogger(__name__)

SEGMENT_COLUMN = "segments"
EXPIRY_COLUMN = "expire_timestamp"


def _parse_expiry(raw: str | None) -> int | None:
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def parse_segment_source(content: str, *, source: str = "<segments>") -> list[SegmentRecord]:
    """Parse segment source text into records, preserving row order.

    Rows with a missing or non-numeric expiry, or an empty segment name, are
    skipped.

    Raises:
        StorageReadError: If the header lacks the required columns or the
            text is not parseable CSV.
    """
    try:
        return _parse_rows(content, source)
    except csv.Error as e:
        raise StorageReadError(source, f"malformed CSV: {e}") from e


def _parse_rows(content: str, source: str) -> list[SegmentRecord]:
    reader = csv.DictReader(io.StringIO(content))
    fieldnames = [name.strip() for name in (reader.fieldnames or [])]
    if SEGMENT_COLUMN not in fieldnames or EXPIRY_COLUMN not in fieldnames:
        raise StorageReadError(source, "missing segments/expire_timestamp columns")
    reader.fieldnames = fieldnames

    records: list[SegmentRecord] = []
    skipped = 0
    for row in reader:
        segment = (row.get(SEGMENT_COLUMN) or "").strip()
        expiry = _parse_expiry(row.get(EXPIRY_COLUMN))
        if not segment or expiry is None:
            skipped += 1
            continue
        records.append(SegmentRecord(segment=segment, expire_timestamp=expiry))

    if skipped:
        logger.debug("Skipped %d malformed row(s) in %s", skipped, source)
    return records


def filter_valid_segments(records: Iterable[SegmentRecord], now_ms: int) -> list[str]:
    """Names of records whose expiry is strictly after ``now_ms``, in order."""
    return [record.segment for record in records if record.is_valid_at(now_ms)]


class SegmentSourceReader:
    """Reads segment source tables from an object store."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    def read(self, key: str) -> list[SegmentRecord]:
        """Read and parse the table at ``key``.

        A missing object is an empty result. Any other failure is raised as
        StorageReadError.
        """
        try:
            content = self._store.read_text(key)
        except FileNotFoundError:
            logger.debug("No segment source at %s", key)
            return []
        except Exception as e:
            raise StorageReadError(key, str(e)) from e
        return parse_segment_source(content, source=key)
