"""CLI for NewsPassID.

Commands:
    serve                     - Run the ingestion API
    generate-id <namespace>   - Print a fresh identifier
    ingest <file>             - Run a JSON identity event through the handler
    show-segments <namespace> - Show a segment source and which rows are valid
    show-events <id>          - List stored event records for an identifier
    show-mapping <old-id>     - Show the succession mapping for an identifier
    visit <url>               - Resolve an identity for a page (client round trip)
    whoami                    - Show the locally stored identifier
    forget                    - Clear the locally stored identifier
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from newspassid.backend.handler import IngestionHandler
from newspassid.backend.layout import StorageLayout, domain_from_url
from newspassid.backend.records import parse_rows
from newspassid.backend.segments import SegmentSourceReader
from newspassid.backend.storage import ObjectStore, build_object_store
from newspassid.client.lifecycle import ClientConfig, create_client
from newspassid.client.page import Page
from newspassid.client.shim import QueuedClientProxy, load_client
from newspassid.client.store import LocalIdentifierStore
from newspassid.config import settings
from newspassid.errors import StorageReadError
from newspassid.identity.generator import generate_id
from newspassid.identity.identifiers import IdentifierFormat

app = typer.Typer(
    name="newspassid",
    help="NewsPassID — first-party visitor identity and audience segments",
    no_args_is_help=True,
)
console = Console()


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


def _store() -> ObjectStore:
    try:
        return build_object_store(settings)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


def _handler(store: ObjectStore) -> IngestionHandler:
    return IngestionHandler.from_settings(store, settings)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Show debug logging")
    ] = False,
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Bind port")] = 8000,
    reload: Annotated[bool, typer.Option(help="Reload on code changes")] = False,
):
    """Run the ingestion API with uvicorn."""
    import uvicorn

    console.print(f"[blue]Serving {settings.ingest_path} on http://{host}:{port}[/blue]")
    uvicorn.run("newspassid.app:app", host=host, port=port, reload=reload)


@app.command("generate-id")
def generate_id_command(
    namespace: Annotated[str, typer.Argument(help="Publisher namespace")],
):
    """Print a freshly generated identifier."""
    try:
        console.print(generate_id(namespace))
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


@app.command()
def ingest(
    path: Annotated[Path, typer.Argument(help="JSON file holding one identity event")],
):
    """Run an identity event through the ingestion handler and store it."""
    if not path.is_file():
        console.print(f"[red]Error:[/red] Path does not exist: {path}")
        raise typer.Exit(1)

    handler = _handler(_store())
    result = run_async(handler.handle(path.read_bytes()))
    body = result.response.to_wire()

    if result.status_code == 200:
        console.print(f"[green]OK[/green] → {body['id']}")
        segments = body.get("segments") or []
        console.print(f"    Segments: {', '.join(segments) if segments else '-'}")
    else:
        console.print(f"[red]{result.status_code}[/red]: {body.get('error')}")
        raise typer.Exit(1)


@app.command("show-segments")
def show_segments(
    namespace: Annotated[str, typer.Argument(help="Namespace (ignored in 'publisher' layout)")],
    domain: Annotated[
        str | None, typer.Option(help="Domain, for identifier-scoped segment sources")
    ] = None,
    identifier: Annotated[
        str | None, typer.Option("--id", help="Identifier, for identifier-scoped sources")
    ] = None,
):
    """Show a segment source table and which rows are currently valid."""
    store = _store()
    layout = _handler(store).layout
    key = layout.segments_key(namespace, domain or "unknown", identifier or "")
    try:
        records = SegmentSourceReader(store).read(key)
    except StorageReadError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    if not records:
        console.print(f"[yellow]No segments at {key}[/yellow]")
        return

    now_ms = time.time_ns() // 1_000_000
    table = Table(title=f"Segments: {key}")
    table.add_column("Segment")
    table.add_column("Expires (ms)", justify="right")
    table.add_column("Status")
    for record in records:
        status = "[green]valid[/green]" if record.is_valid_at(now_ms) else "[red]expired[/red]"
        table.add_row(record.segment, str(record.expire_timestamp), status)
    console.print(table)


def _event_keys(
    store: ObjectStore,
    layout: StorageLayout,
    identifier: str,
    domain: str | None = None,
) -> list[str]:
    namespace = IdentifierFormat(settings.id_pattern).namespace_of(identifier)
    partition = f"{layout.partition(namespace)}/"
    if domain is not None:
        candidates = store.list_keys(layout.identifier_prefix(namespace, domain, identifier))
    else:
        candidates = store.list_keys(partition)

    keys = []
    for key in candidates:
        key_domain = key.removeprefix(partition).split("/", 1)[0]
        prefix = layout.identifier_prefix(namespace, key_domain, identifier)
        name = key.removeprefix(prefix)
        # Event records sit directly under the identifier folder
        if key.startswith(prefix) and "/" not in name and name != "segments.csv":
            keys.append(key)
    return keys


def _timestamp_of(key: str) -> int:
    stem = key.rsplit("/", 1)[-1].removesuffix(".csv")
    return int(stem) if stem.isdigit() else 0


@app.command("show-events")
def show_events(
    identifier: Annotated[str, typer.Argument(help="Visitor identifier")],
    limit: Annotated[int, typer.Option(help="Maximum records")] = 20,
    domain: Annotated[
        str | None, typer.Option(help="Only events recorded for this domain")
    ] = None,
):
    """List stored event records for an identifier, newest first."""
    store = _store()
    layout = _handler(store).layout
    keys = _event_keys(store, layout, identifier, domain)
    if not keys:
        console.print(f"[yellow]No events found for {identifier}[/yellow]")
        return

    keys.sort(key=_timestamp_of, reverse=True)
    table = Table(title=f"Events: {identifier}")
    table.add_column("Timestamp", justify="right")
    table.add_column("Domain")
    table.add_column("Previous")
    table.add_column("Segments")
    for key in keys[:limit]:
        for row in parse_rows(store.read_text(key)):
            table.add_row(
                row.get("timestamp", ""),
                domain_from_url(row.get("url", "")),
                row.get("previousId") or "-",
                row.get("segments") or "-",
            )
    console.print(table)
    console.print(f"\n[dim]Showing {min(limit, len(keys))} of {len(keys)} events[/dim]")


@app.command("show-mapping")
def show_mapping(
    previous_id: Annotated[str, typer.Argument(help="Superseded identifier")],
):
    """Show which identifier replaced ``previous_id``."""
    store = _store()
    layout = _handler(store).layout
    namespace = IdentifierFormat(settings.id_pattern).namespace_of(previous_id)
    key = layout.mapping_key(namespace, previous_id)
    if not store.exists(key):
        console.print(f"[yellow]No mapping for {previous_id}[/yellow]")
        raise typer.Exit(1)

    rows = parse_rows(store.read_text(key))

    for row in rows:
        console.print(Panel(
            f"[bold]Old:[/bold] {row.get('oldId')}\n"
            f"[bold]New:[/bold] {row.get('newId')}\n"
            f"[bold]Timestamp:[/bold] {row.get('timestamp')}",
            title="Succession Mapping",
        ))


@app.command()
def visit(
    url: Annotated[str, typer.Argument(help="Page URL to resolve an identity for")],
    identifier: Annotated[
        str | None, typer.Option("--id", help="Publisher-supplied identifier")
    ] = None,
    segment: Annotated[
        list[str] | None, typer.Option("--segment", "-s", help="Publisher segment (repeatable)")
    ] = None,
    cookie: Annotated[str, typer.Option(help="Cookie header for consent fallback")] = "",
):
    """Resolve an identity for a page, as the in-page client would."""
    async def _visit():
        page = Page(url=url, cookie=cookie)
        proxy = QueuedClientProxy(default_delay_ms=settings.shim_default_delay_ms)
        # Without --id or --segment the proxy's default set_id() does the work
        pending = proxy.set_id(identifier, segment) if identifier or segment else None

        client = await load_client(
            proxy, lambda: create_client(ClientConfig.from_settings(settings), page)
        )
        if client is None:
            console.print("[red]Error:[/red] client failed to load")
            raise typer.Exit(1)

        async with client:
            if pending is not None:
                visitor_id = await pending
            else:
                await proxy.wait_default()
                visitor_id = await client.get_id()
            segments = client.get_segments()
        console.print(Panel(
            f"[bold]ID:[/bold] {visitor_id}\n"
            f"[bold]Consent:[/bold] {client.consent_string or '-'}\n"
            f"[bold]Segments:[/bold] {', '.join(segments) if segments else '-'}",
            title="NewsPassID",
        ))

    run_async(_visit())


@app.command()
def whoami():
    """Show the locally stored identifier."""
    async def _whoami():
        store = await LocalIdentifierStore.open()
        try:
            value = await store.get(settings.storage_key)
        finally:
            await store.aclose()
        if value is None:
            console.print("[yellow]No identifier stored.[/yellow]")
            raise typer.Exit(1)
        console.print(value)

    run_async(_whoami())


@app.command()
def forget():
    """Clear the locally stored identifier."""
    async def _forget():
        store = await LocalIdentifierStore.open()
        try:
            await store.clear(settings.storage_key)
        finally:
            await store.aclose()
        console.print("[green]Identifier cleared.[/green]")

    run_async(_forget())


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
