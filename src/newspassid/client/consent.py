"""Consent string resolution.

Primary path: the page's consent signaling API, called with
``"getGPPData"``; its callback settles a future. The wait is bounded so a
signaling API that never calls back cannot stall identity resolution.

Fallback path (API absent, raised, reported failure, or timed out): the first
non-empty cookie among ``gpp``, ``usprivacy`` and ``euconsent-v2``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Final

from newspassid.client.page import ConsentSignalingAPI, Page
from newspassid.errors import ConsentResolutionError

logger = logging.getLogger(__name__)

GPP_COMMAND: Final = "getGPPData"
FALLBACK_COOKIES: Final = ("gpp", "usprivacy", "euconsent-v2")
DEFAULT_TIMEOUT_MS: Final = 500


def _gpp_string(data: Any) -> str | None:
    if data is None:
        return None
    if isinstance(data, Mapping):
        value = data.get("gppString")
    else:
        value = getattr(data, "gpp_string", None) or getattr(data, "gppString", None)
    return value if isinstance(value, str) and value else None


class ConsentResolver:
    """Obtains the visitor's consent string from a page."""

    def __init__(self, page: Page, *, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        self._page = page
        self._timeout_ms = timeout_ms

    async def resolve(self) -> str | None:
        """Return the consent string, or None when none is declared. Never raises."""
        api = self._page.gpp
        if api is not None:
            try:
                return await self._from_api(api)
            except ConsentResolutionError as e:
                logger.warning("[CONSENT] API unavailable (%s), checking cookies", e)
        return self._from_cookies()

    async def _from_api(self, api: ConsentSignalingAPI) -> str:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[tuple[Any, bool]] = loop.create_future()

        def _settle(data: Any, success: bool) -> None:
            if not future.done():
                future.set_result((data, success))

        def callback(data: Any, success: bool) -> None:
            # The API may call back synchronously, later, or from another thread
            loop.call_soon_threadsafe(_settle, data, success)

        try:
            api(GPP_COMMAND, callback)
        except Exception as e:
            raise ConsentResolutionError(f"{GPP_COMMAND} raised {e!r}") from e

        try:
            data, success = await asyncio.wait_for(future, timeout=self._timeout_ms / 1000)
        except TimeoutError as e:
            raise ConsentResolutionError(f"no callback within {self._timeout_ms}ms") from e

        value = _gpp_string(data)
        if not success or value is None:
            raise ConsentResolutionError("callback reported no consent string")
        return value

    def _from_cookies(self) -> str | None:
        for name in FALLBACK_COOKIES:
            value = self._page.get_cookie(name)
            if value:
                return value
        return None
