"""Database models and enumerations for NewsPassID."""

from newspassid.models.base import Base
from newspassid.models.enums import (
    PathLayout,
    ResolutionOutcome,
    SegmentPolicy,
    SegmentSourceScope,
)
from newspassid.models.stored_value import StoredValue

__all__ = [
    "Base",
    "PathLayout",
    "ResolutionOutcome",
    "SegmentPolicy",
    "SegmentSourceScope",
    "StoredValue",
]
