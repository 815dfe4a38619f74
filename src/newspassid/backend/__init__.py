"""Ingestion backend for NewsPassID.

Submodules:
- storage: object-store protocol with local filesystem and S3 backends
- layout: storage key layout and domain derivation
- records: stored row types and CSV rendering
- segments: segment source parsing and expiry filtering
- handler: request validation, persistence and response
"""

from newspassid.backend.handler import HandlerResult, IngestionHandler, parse_event
from newspassid.backend.layout import StorageLayout, domain_from_url
from newspassid.backend.records import EventRecord, SegmentRecord, SuccessionMapping
from newspassid.backend.segments import (
    SegmentSourceReader,
    filter_valid_segments,
    parse_segment_source,
)
from newspassid.backend.storage import (
    LocalObjectStore,
    ObjectStore,
    S3ObjectStore,
    build_object_store,
)

__all__ = [
    "EventRecord",
    "HandlerResult",
    "IngestionHandler",
    "LocalObjectStore",
    "ObjectStore",
    "S3ObjectStore",
    "SegmentRecord",
    "SegmentSourceReader",
    "StorageLayout",
    "SuccessionMapping",
    "build_object_store",
    "domain_from_url",
    "filter_valid_segments",
    "parse_event",
    "parse_segment_source",
]
