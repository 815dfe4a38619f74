"""Identity lifecycle manager.

``NewsPassClient.set_id`` is the one operation pages invoke:

1. Load the stored identifier
2. Resolve: explicit id, else stored id, else a generated one, tagged as
   FRESH, UNCHANGED or SUPERSEDED (see ``resolve_identity``)
3. Persist and announce ``newspassid:change`` when the id changed
4. Resolve consent (failures become "")
5. Send the identity event to the backend
6. Apply the resulting segments to the page and announce
   ``newspass_segments_ready``
7. If the backend is unreachable, fall back to publisher segments (when
   given) or keep the previous segment state
8. Return the identifier whatever the network outcome
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from types import TracebackType
from typing import Any

import httpx
from pydantic import BaseModel, field_validator

from newspassid.client.consent import DEFAULT_TIMEOUT_MS, ConsentResolver
from newspassid.client.network import send_to_backend
from newspassid.client.page import Page
from newspassid.client.store import LocalIdentifierStore
from newspassid.config import Settings
from newspassid.errors import NetworkError
from newspassid.identity.generator import generate_id
from newspassid.identity.identifiers import is_valid_namespace
from newspassid.models.enums import ResolutionOutcome, SegmentPolicy
from newspassid.schemas import IdentityEvent

logger = logging.getLogger(__name__)

CHANGE_EVENT = "newspassid:change"
SEGMENTS_READY_EVENT = "newspass_segments_ready"
META_PREFIX = "newspass_segment_"
TARGETING_KEY = "npid_segments"
DATA_LAYER_KEY = "newspass_segments"

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class ClientConfig(BaseModel):
    """Per-publisher client configuration."""

    namespace: str
    endpoint_url: str
    storage_key: str = "newspassid"
    inject_meta_tags: bool = True
    consent_timeout_ms: int = DEFAULT_TIMEOUT_MS
    request_timeout_seconds: float = 10.0
    segment_policy: SegmentPolicy = SegmentPolicy.SERVER

    @field_validator("namespace")
    @classmethod
    def _check_namespace(cls, v: str) -> str:
        if not is_valid_namespace(v):
            raise ValueError("namespace must be letters, digits or underscores")
        return v

    @classmethod
    def from_settings(cls, settings: Settings) -> ClientConfig:
        return cls(
            namespace=settings.namespace,
            endpoint_url=settings.endpoint_url,
            storage_key=settings.storage_key,
            inject_meta_tags=settings.inject_meta_tags,
            consent_timeout_ms=settings.consent_timeout_ms,
            request_timeout_seconds=settings.request_timeout_seconds,
            segment_policy=SegmentPolicy(settings.segment_policy),
        )


@dataclass(frozen=True)
class IdentityResolution:
    """Result of choosing the identifier for one set_id() call."""

    identifier: str
    outcome: ResolutionOutcome
    previous_id: str | None = None

    @property
    def changed(self) -> bool:
        """True when the store must be updated."""
        return self.outcome is not ResolutionOutcome.UNCHANGED


def resolve_identity(
    stored: str | None,
    explicit: str | None,
    generate: Callable[[], str],
) -> IdentityResolution:
    """Decide which identifier a set_id() call uses.

    Only a publisher-supplied id that replaces a different stored id is a
    SUPERSEDED outcome and carries a previous id; filling an empty store is
    FRESH whether the id was supplied or generated.
    """
    if explicit:
        if not stored:
            return IdentityResolution(explicit, ResolutionOutcome.FRESH)
        if explicit == stored:
            return IdentityResolution(stored, ResolutionOutcome.UNCHANGED)
        return IdentityResolution(explicit, ResolutionOutcome.SUPERSEDED, previous_id=stored)
    if stored:
        return IdentityResolution(stored, ResolutionOutcome.UNCHANGED)
    return IdentityResolution(generate(), ResolutionOutcome.FRESH)


def segments_to_key_value(segments: Sequence[str]) -> dict[str, str]:
    """Map each segment to a targeting-safe key (lower-case, non-alphanumerics → ``_``)."""
    return {_NON_ALNUM.sub("_", segment.lower()): segment for segment in segments}


def combine_segments(
    policy: SegmentPolicy,
    server: Sequence[str] | None,
    publisher: Sequence[str] | None,
) -> list[str] | None:
    """Combine backend and publisher segments; None means "keep current state"."""
    if policy is SegmentPolicy.PUBLISHER and publisher is not None:
        return list(publisher)
    if server is None:
        return list(publisher) if publisher is not None else None
    if policy is SegmentPolicy.MERGE and publisher:
        merged = list(server)
        merged.extend(s for s in publisher if s not in merged)
        return merged
    return list(server)


class NewsPassClient:
    """The NewsPassID client bound to one page.

    Args:
        config: Publisher configuration.
        page: Host page the client reads from and writes to.
        store: Durable identifier store.
        http_client: HTTP client for the backend; one is created (and owned)
            when omitted.
        consent_resolver: Overrides the default resolver for ``page``.
        id_factory: Generates a new identifier for a namespace.
        clock: Current time in epoch milliseconds.
        owns_store: Close ``store`` together with the client.
    """

    def __init__(
        self,
        config: ClientConfig,
        page: Page,
        store: LocalIdentifierStore,
        *,
        http_client: httpx.AsyncClient | None = None,
        consent_resolver: ConsentResolver | None = None,
        id_factory: Callable[[str], str] = generate_id,
        clock: Callable[[], int] = _now_ms,
        owns_store: bool = False,
    ) -> None:
        self.config = config
        self.page = page
        self._store = store
        self._owns_store = owns_store
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.request_timeout_seconds)
        self._consent = consent_resolver or ConsentResolver(
            page, timeout_ms=config.consent_timeout_ms
        )
        self._id_factory = id_factory
        self._clock = clock
        self._segments: list[str] = []
        self._segment_key_value: dict[str, str] = {}
        self.consent_string: str | None = None
        logger.info("[CLIENT] initialized with namespace %s", config.namespace)

    async def __aenter__(self) -> NewsPassClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
        if self._owns_store:
            await self._store.aclose()

    # ── Public operations ────────────────────────────────────────────────────

    async def set_id(
        self,
        explicit_id: str | None = None,
        publisher_segments: Sequence[str] | None = None,
    ) -> str:
        """Set or create the visitor identifier and refresh segments.

        Args:
            explicit_id: Identifier supplied by the publisher, if any.
            publisher_segments: Segments declared by the publisher page.

        Returns:
            The resolved identifier, regardless of the backend outcome.
        """
        stored = await self._store.get(self.config.storage_key)
        resolution = resolve_identity(
            stored, explicit_id, lambda: self._id_factory(self.config.namespace)
        )

        if resolution.changed:
            await self._store.set(self.config.storage_key, resolution.identifier)
            self.page.dispatch_event(CHANGE_EVENT, {"id": resolution.identifier})
            logger.debug(
                "[CLIENT] id %s (%s)", resolution.identifier, resolution.outcome.value
            )

        self.consent_string = await self._resolve_consent()

        publisher = list(publisher_segments) if publisher_segments is not None else None
        event = IdentityEvent(
            id=resolution.identifier,
            timestamp=self._clock(),
            url=self.page.url,
            consent_string=self.consent_string,
            previous_id=resolution.previous_id,
            publisher_segments=publisher,
        )

        try:
            response = await send_to_backend(self._http, self.config.endpoint_url, event)
        except NetworkError as e:
            logger.error("[CLIENT] backend call failed: %s", e)
            if publisher is not None:
                self._apply_segments(publisher)
            return resolution.identifier

        segments = combine_segments(self.config.segment_policy, response.segments, publisher)
        if segments is not None:
            self._apply_segments(segments)
        return resolution.identifier

    async def get_id(self) -> str | None:
        """Return the stored identifier, if any."""
        return await self._store.get(self.config.storage_key)

    def get_segments(self) -> list[str]:
        """Return a copy of the active segment set."""
        return list(self._segments)

    def get_segments_as_key_value(self) -> dict[str, str]:
        """Return a copy of the active segment key-value map."""
        return dict(self._segment_key_value)

    async def clear_id(self) -> None:
        """Drop the stored identifier, the active segments and injected metadata."""
        await self._store.clear(self.config.storage_key)
        self._segments = []
        self._segment_key_value = {}
        self.page.remove_meta(META_PREFIX)
        logger.info("[CLIENT] id cleared")

    # ── Internals ────────────────────────────────────────────────────────────

    async def _resolve_consent(self) -> str:
        try:
            return await self._consent.resolve() or ""
        except Exception as e:
            logger.warning("[CONSENT] lookup failed: %s", e)
            return ""

    def _apply_segments(self, segments: Sequence[str]) -> None:
        self._segments = list(segments)
        self._segment_key_value = segments_to_key_value(self._segments)
        self._apply_to_page()
        if self.config.inject_meta_tags:
            self._inject_meta_tags()
        self.page.dispatch_event(
            SEGMENTS_READY_EVENT,
            {
                "segments": list(self._segments),
                "segmentKeyValue": dict(self._segment_key_value),
            },
        )

    def _apply_to_page(self) -> None:
        segments = list(self._segments)
        self.page.data_layer[DATA_LAYER_KEY] = segments

        if self.page.ad_server is not None:
            try:
                self.page.ad_server.set_targeting(TARGETING_KEY, segments)
                self.page.ad_server.refresh()
            except Exception as e:
                logger.warning("[TARGETING] ad server: %s", e)

        if self.page.header_bidding is not None:
            try:
                self.page.header_bidding.set_targeting_for_gpt_async({TARGETING_KEY: segments})
            except Exception as e:
                logger.warning("[TARGETING] header bidding: %s", e)

        self.page.body_dataset[DATA_LAYER_KEY] = json.dumps(segments)

    def _inject_meta_tags(self) -> None:
        self.page.remove_meta(META_PREFIX)
        for key, value in self._segment_key_value.items():
            self.page.set_meta(f"{META_PREFIX}{key}", value)


async def create_client(
    config: ClientConfig,
    page: Page,
    *,
    store_url: str | None = None,
    **kwargs: Any,
) -> NewsPassClient:
    """Open the local store at ``store_url`` and build a client that owns it."""
    store = await LocalIdentifierStore.open(store_url)
    return NewsPassClient(config, page, store, owns_store=True, **kwargs)
