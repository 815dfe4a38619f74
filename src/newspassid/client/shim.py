"""Event queue shim: buffers client calls until the real client is loaded.

The page gets a ``QueuedClientProxy`` immediately. Until ``attach`` is
called every method call is put on a FIFO channel and answered with a
future. ``attach`` replays the channel strictly in order against the real
client, settling each future with the call's result (or error), and from
then on forwards calls directly.

If the page never asked for ``set_id`` before the client loaded, the proxy
issues one default ``set_id()`` shortly after attaching so every page
session resolves an identity exactly once.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from newspassid.client.lifecycle import NewsPassClient

logger = logging.getLogger(__name__)

DEFAULT_SET_ID_DELAY_MS = 50

PROXIED_METHODS = frozenset(
    {"set_id", "get_id", "get_segments", "get_segments_as_key_value", "clear_id"}
)


@dataclass
class QueuedCall:
    """One buffered method invocation."""

    method: str
    args: tuple[Any, ...]
    kwargs: dict[str, Any] = field(default_factory=dict)
    future: asyncio.Future[Any] | None = None


async def _invoke(client: Any, call: QueuedCall) -> Any:
    result = getattr(client, call.method)(*call.args, **call.kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


def _retrieve_exception(future: asyncio.Future[Any]) -> None:
    # Pages often drop the returned future; mark its error as seen
    if not future.cancelled():
        future.exception()


class QueuedClientProxy:
    """Stand-in for the client while it loads.

    Args:
        default_delay_ms: Delay before the default ``set_id()`` after attach.
    """

    def __init__(self, *, default_delay_ms: int = DEFAULT_SET_ID_DELAY_MS) -> None:
        self._queue: asyncio.Queue[QueuedCall] = asyncio.Queue()
        self._client: NewsPassClient | None = None
        self._default_delay_ms = default_delay_ms
        self._set_id_requested = False
        self._default_task: asyncio.Task[None] | None = None

    @property
    def attached(self) -> bool:
        return self._client is not None

    @property
    def pending(self) -> int:
        """Number of calls waiting for the real client."""
        return self._queue.qsize()

    # ── Proxied API ──────────────────────────────────────────────────────────

    def set_id(self, *args: Any, **kwargs: Any) -> asyncio.Future[Any]:
        return self.call("set_id", *args, **kwargs)

    def get_id(self) -> asyncio.Future[Any]:
        return self.call("get_id")

    def get_segments(self) -> asyncio.Future[Any]:
        return self.call("get_segments")

    def get_segments_as_key_value(self) -> asyncio.Future[Any]:
        return self.call("get_segments_as_key_value")

    def clear_id(self) -> asyncio.Future[Any]:
        return self.call("clear_id")

    def call(self, method: str, *args: Any, **kwargs: Any) -> asyncio.Future[Any]:
        """Buffer (or forward, once attached) a client method call."""
        if method not in PROXIED_METHODS:
            raise AttributeError(f"Unknown client method: {method}")
        if method == "set_id":
            self._set_id_requested = True

        queued = QueuedCall(method=method, args=args, kwargs=kwargs)
        if self._client is not None:
            forwarded = asyncio.ensure_future(_invoke(self._client, queued))
            forwarded.add_done_callback(_retrieve_exception)
            return forwarded

        queued.future = asyncio.get_running_loop().create_future()
        queued.future.add_done_callback(_retrieve_exception)
        self._queue.put_nowait(queued)
        return queued.future

    # ── Loading ──────────────────────────────────────────────────────────────

    async def attach(self, client: NewsPassClient) -> int:
        """Replay buffered calls against ``client`` in FIFO order, then forward.

        Returns:
            Number of buffered calls replayed.
        """
        replayed = 0
        # Calls made while replaying join the back of the queue and are drained too
        while not self._queue.empty():
            queued = self._queue.get_nowait()
            replayed += 1
            try:
                result = await _invoke(client, queued)
            except Exception as e:
                logger.error("[SHIM] queued %s failed: %s", queued.method, e)
                if queued.future is not None and not queued.future.done():
                    queued.future.set_exception(e)
                continue
            if queued.future is not None and not queued.future.done():
                queued.future.set_result(result)

        self._client = client
        logger.debug("[SHIM] attached, replayed %d call(s)", replayed)

        if not self._set_id_requested:
            self._default_task = asyncio.create_task(self._default_set_id(client))
        return replayed

    async def wait_default(self) -> None:
        """Wait for the default ``set_id()`` (if one was scheduled) to finish."""
        if self._default_task is not None:
            await self._default_task

    async def aclose(self) -> None:
        if self._default_task is not None and not self._default_task.done():
            self._default_task.cancel()
            try:
                await self._default_task
            except asyncio.CancelledError:
                pass

    async def _default_set_id(self, client: NewsPassClient) -> None:
        await asyncio.sleep(self._default_delay_ms / 1000)
        if self._set_id_requested:
            return
        self._set_id_requested = True
        try:
            await client.set_id()
        except Exception:
            logger.exception("[SHIM] default set_id failed")


async def load_client(
    proxy: QueuedClientProxy,
    factory: Callable[[], NewsPassClient | Awaitable[NewsPassClient]],
) -> NewsPassClient | None:
    """Build the real client and attach it to ``proxy``.

    If the factory fails the error is logged, the proxy keeps buffering, and
    None is returned.
    """
    try:
        client = factory()
        if inspect.isawaitable(client):
            client = await client
    except Exception:
        logger.exception("[SHIM] client failed to load")
        return None
    await proxy.attach(client)
    return client
