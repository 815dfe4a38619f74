"""Host page model for the NewsPassID client.

The client runs inside a publisher page. ``Page`` carries everything the
client reads from or writes to that page: URL, cookies, the consent
signaling API, ad-platform handles, head metadata, the body dataset, a
global data layer, and event listeners.

Ad platforms are external collaborators; the client only calls them through
the two small protocols below.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# (data, success) → None; data is a mapping with "gppString" or an object with gpp_string
ConsentCallback = Callable[[Any, bool], None]
ConsentSignalingAPI = Callable[[str, ConsentCallback], None]
EventListener = Callable[[dict[str, Any]], None]


class AdServerTargeting(Protocol):
    """Ad-server page-level targeting (e.g. a GPT ``pubads()`` service)."""

    def set_targeting(self, key: str, value: str | list[str]) -> None:
        ...

    def refresh(self) -> None:
        ...


class HeaderBiddingTargeting(Protocol):
    """Header-bidding library targeting (e.g. Prebid)."""

    def set_targeting_for_gpt_async(self, targeting: Mapping[str, Any]) -> None:
        ...


def parse_cookie_header(header: str) -> dict[str, str]:
    """Parse a ``Cookie`` header into a dict; the first occurrence of a name wins."""
    cookies: dict[str, str] = {}
    for part in header.split(";"):
        name, sep, value = part.strip().partition("=")
        if not sep or not name:
            continue
        cookies.setdefault(name, value)
    return cookies


@dataclass
class Page:
    """A publisher page as seen by the client."""

    url: str
    cookie: str = ""
    gpp: ConsentSignalingAPI | None = None
    ad_server: AdServerTargeting | None = None
    header_bidding: HeaderBiddingTargeting | None = None
    head_meta: dict[str, str] = field(default_factory=dict)
    body_dataset: dict[str, str] = field(default_factory=dict)
    data_layer: dict[str, Any] = field(default_factory=dict)
    _listeners: dict[str, list[EventListener]] = field(default_factory=dict, repr=False)

    def get_cookie(self, name: str) -> str | None:
        value = parse_cookie_header(self.cookie).get(name)
        return value or None

    # ── Head metadata ────────────────────────────────────────────────────────

    def set_meta(self, name: str, content: str) -> None:
        self.head_meta[name] = content

    def remove_meta(self, prefix: str) -> int:
        """Remove every meta entry whose name starts with ``prefix``."""
        names = [name for name in self.head_meta if name.startswith(prefix)]
        for name in names:
            del self.head_meta[name]
        return len(names)

    # ── Events ───────────────────────────────────────────────────────────────

    def add_event_listener(self, event_name: str, listener: EventListener) -> None:
        self._listeners.setdefault(event_name, []).append(listener)

    def remove_event_listener(self, event_name: str, listener: EventListener) -> None:
        listeners = self._listeners.get(event_name, [])
        if listener in listeners:
            listeners.remove(listener)

    def dispatch_event(self, event_name: str, detail: dict[str, Any]) -> None:
        """Call each listener in registration order; a failing listener is logged."""
        for listener in list(self._listeners.get(event_name, [])):
            try:
                listener(detail)
            except Exception:
                logger.exception("Listener for %s failed", event_name)
