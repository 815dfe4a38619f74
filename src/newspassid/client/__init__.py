"""NewsPassID client.

Main entry point:
    from newspassid.client import ClientConfig, Page, create_client

    client = await create_client(config, Page(url="https://example.com/"))
    visitor_id = await client.set_id()

Before the client is ready, pages talk to a QueuedClientProxy, which
replays their calls once ``load_client`` attaches the real client.
"""

from newspassid.client.consent import ConsentResolver
from newspassid.client.lifecycle import (
    ClientConfig,
    IdentityResolution,
    NewsPassClient,
    combine_segments,
    create_client,
    resolve_identity,
    segments_to_key_value,
)
from newspassid.client.page import Page
from newspassid.client.shim import QueuedClientProxy, load_client
from newspassid.client.store import LocalIdentifierStore

__all__ = [
    "ClientConfig",
    "ConsentResolver",
    "IdentityResolution",
    "LocalIdentifierStore",
    "NewsPassClient",
    "Page",
    "QueuedClientProxy",
    "combine_segments",
    "create_client",
    "load_client",
    "resolve_identity",
    "segments_to_key_value",
]
