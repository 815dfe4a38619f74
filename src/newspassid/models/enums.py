"""Enumerations for the NewsPassID data model."""

from enum import Enum


class ResolutionOutcome(str, Enum):
    """How set_id() arrived at the identifier it returns."""

    FRESH = "fresh"  # Nothing was stored; explicit or generated id fills the store
    UNCHANGED = "unchanged"  # Resolved id equals the stored one
    SUPERSEDED = "superseded"  # Publisher replaced a stored id with a different one


class SegmentPolicy(str, Enum):
    """How backend segments combine with publisher-declared segments."""

    SERVER = "server"  # Backend set only
    MERGE = "merge"  # Backend set, then publisher segments not already present
    PUBLISHER = "publisher"  # Publisher segments when supplied, else backend set


class PathLayout(str, Enum):
    """Second component of every storage key."""

    NAMESPACE = "namespace"  # Identifier namespace (e.g. "acme" for "acme-1f2e...")
    PUBLISHER = "publisher"  # Literal "publisher" for all identifiers


class SegmentSourceScope(str, Enum):
    """Where the segment source table lives."""

    NAMESPACE = "namespace"  # <root>/<ns>/segments.csv
    IDENTIFIER = "identifier"  # <root>/<ns>/<domain>/<id>/segments.csv
