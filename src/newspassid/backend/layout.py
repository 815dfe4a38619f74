"""Storage key layout and domain derivation for ingestion records.

Layout (root folder configurable, default ``newspassid``)::

    <root>/<ns>/<domain>/<id>/<timestamp>.csv    event record
    <root>/<ns>/mappings/<previousId>.csv        succession mapping
    <root>/<ns>/segments.csv                     segment source (namespace scope)
    <root>/<ns>/<domain>/<id>/segments.csv       segment source (identifier scope)

``<ns>`` is the identifier's namespace or the literal ``publisher``,
depending on the deployment's PathLayout.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

from newspassid.models.enums import PathLayout, SegmentSourceScope

UNKNOWN_DOMAIN = "unknown"
PUBLISHER_SEGMENT = "publisher"


def domain_from_url(url: str) -> str:
    """Return the URL's hostname without a leading ``www.``.

    Anything that does not parse as an absolute URL with a host, or whose
    host has an empty label (``"."``, ``".."``, ``"a..b"``), gives
    ``"unknown"``. Never raises.

    Example:
        >>> domain_from_url("https://www.example.com/x")
        'example.com'
        >>> domain_from_url("not a url")
        'unknown'
    """
    try:
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            return UNKNOWN_DOMAIN
        hostname = parts.hostname
        # Accessing .port validates the netloc (raises ValueError on junk)
        _ = parts.port
    except (ValueError, TypeError, AttributeError):
        return UNKNOWN_DOMAIN
    if not hostname or any(ch.isspace() or ch == "\\" for ch in hostname):
        return UNKNOWN_DOMAIN
    # The domain becomes a key component: no empty labels, so no "." or ".."
    hostname = hostname.removesuffix(".")
    if not hostname or any(not label for label in hostname.split(".")):
        return UNKNOWN_DOMAIN
    return hostname.removeprefix("www.")


@dataclass(frozen=True)
class StorageLayout:
    """Computes every storage key used by the ingestion handler."""

    root: str = "newspassid"
    path_layout: PathLayout = PathLayout.NAMESPACE
    segment_scope: SegmentSourceScope = SegmentSourceScope.NAMESPACE

    def partition(self, namespace: str) -> str:
        if self.path_layout is PathLayout.PUBLISHER:
            return f"{self.root}/{PUBLISHER_SEGMENT}"
        return f"{self.root}/{namespace}"

    def event_key(self, namespace: str, domain: str, identifier: str, timestamp: int) -> str:
        return f"{self.partition(namespace)}/{domain}/{identifier}/{timestamp}.csv"

    def mapping_key(self, namespace: str, previous_id: str) -> str:
        return f"{self.partition(namespace)}/mappings/{previous_id}.csv"

    def segments_key(self, namespace: str, domain: str, identifier: str) -> str:
        if self.segment_scope is SegmentSourceScope.IDENTIFIER:
            return f"{self.partition(namespace)}/{domain}/{identifier}/segments.csv"
        return f"{self.partition(namespace)}/segments.csv"

    def identifier_prefix(self, namespace: str, domain: str, identifier: str) -> str:
        """Prefix under which all event records of one identifier live."""
        return f"{self.partition(namespace)}/{domain}/{identifier}/"
