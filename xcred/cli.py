"""Command-line interface for xcred."""

import asyncio
import json
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from xcred import EngineConfig, ProfileEngine, __version__
from xcred.geo import flag_emoji, is_region_code, region_for_code, resolve
from xcred.models.profile import ProfileRecord

app = typer.Typer(
    name="xcred",
    help="X profile credibility engine",
    add_completion=False,
)
cache_app = typer.Typer(help="Manage the local profile cache")
app.add_typer(cache_app, name="cache")
console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"xcred version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """xcred - X profile credibility engine."""
    pass


@app.command()
def lookup(
    usernames: list[str] = typer.Argument(..., help="X usernames to look up"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Force refresh, skip local cache"
    ),
    as_json: bool = typer.Option(
        False, "--json", help="Print records as JSON"
    ),
):
    """Look up one or more profiles."""
    config = EngineConfig()

    async def run():
        async with ProfileEngine(config) as engine:
            records = await engine.lookup_many(usernames, force_refresh=force)

        for username, record in zip(usernames, records):
            if as_json:
                console.print_json(json.dumps(record.persisted() if record else None))
            elif record is None:
                console.print(f"[yellow]-[/yellow] @{username}: not cached and not fetched")
            elif record.error:
                console.print(f"[red]✗[/red] @{record.username}: fetch failed")
            else:
                _print_record(record)

        found = sum(1 for r in records if r is not None and not r.error)
        if not as_json:
            console.print(f"\n[bold]Resolved {found}/{len(records)} profiles[/bold]")

    asyncio.run(run())


@app.command()
def score(
    username: str = typer.Argument(..., help="X username"),
):
    """Show the credibility score breakdown for a profile."""
    config = EngineConfig()

    async def run():
        async with ProfileEngine(config) as engine:
            record = await engine.lookup(username)
            if record is None or record.error:
                console.print(f"[red]No profile data for @{username.lstrip('@')}[/red]")
                raise typer.Exit(1)
            breakdown = engine.score(record)

        table = Table(title=f"@{record.username} - tier {record.tier}")
        table.add_column("Factor")
        table.add_column("Points", justify="right")
        table.add_column("Note", style="dim")
        for factor in breakdown.factors:
            table.add_row(factor.name, f"{factor.value:+d}", factor.note or "")
        console.print(table)
        console.print(f"Total: [bold]{breakdown.total:+d}[/bold]  platform: {breakdown.platform}")
        if breakdown.instant_tier_override is not None:
            console.print(f"[red]Instant override to tier {breakdown.instant_tier_override}[/red]")

    asyncio.run(run())


@app.command()
def geo(
    location: str = typer.Argument(..., help="Free-text location, e.g. 'New York, USA'"),
):
    """Resolve a location string to a country or region code."""
    code = resolve(location)
    if code is None:
        console.print(f"[yellow]No match for {location!r}[/yellow]")
        raise typer.Exit(1)

    if is_region_code(code):
        region = region_for_code(code)
        console.print(f"{region.emoji} {code} (region: {region.name})")
    else:
        console.print(f"{flag_emoji(code)} {code}")


@cache_app.command("stats")
def cache_stats():
    """Show entry counts for each cache tier."""
    config = EngineConfig()

    async def run():
        async with ProfileEngine(config) as engine:
            stats = await engine.stats()

        console.print(f"Backend: {config.store_backend.value}")
        console.print(f"Entries: {stats.entries}/{stats.max_entries}")
        console.print(f"Memory: {stats.memory_entries}/{stats.memory_max}")
        if stats.remote_entries is not None:
            console.print(f"Remote: {stats.remote_entries}")

    asyncio.run(run())


@cache_app.command("clear")
def cache_clear(
    username: Optional[str] = typer.Option(None, "--user", "-u", help="Username to invalidate"),
):
    """Clear the local cache, or one username."""
    config = EngineConfig()

    async def run():
        async with ProfileEngine(config) as engine:
            if username:
                await engine.invalidate_cache(username)
                console.print(f"[green]✓[/green] Cleared cache for @{username.lstrip('@')}")
            else:
                await engine.clear_cache()
                console.print("[green]✓[/green] Cleared all cache")

    asyncio.run(run())


@cache_app.command("sweep")
def cache_sweep():
    """Purge expired entries and evict over the size ceiling."""
    config = EngineConfig()

    async def run():
        async with ProfileEngine(config) as engine:
            result = await engine.sweep()
        console.print(f"Expired: {result.expired}  Evicted: {result.evicted}")

    asyncio.run(run())


@cache_app.command("sync")
def cache_sync():
    """Upload valid local records to the shared remote store."""
    config = EngineConfig()
    if not config.remote_url:
        console.print("[yellow]No remote store configured (set XCRED_REMOTE_URL)[/yellow]")
        raise typer.Exit(1)

    async def run():
        async with ProfileEngine(config) as engine:
            synced = await engine.sync_to_remote()
        console.print(f"[green]✓[/green] Uploaded {synced} records")

    asyncio.run(run())


@app.command()
def refresh(
    username: str = typer.Argument(..., help="X username"),
):
    """Ask the authority to revalidate a profile."""
    config = EngineConfig()

    async def run():
        async with ProfileEngine(config) as engine:
            requested = await engine.request_refresh(username)

        if not requested:
            console.print(f"[red]Could not request a refresh for @{username.lstrip('@')}[/red]")
            raise typer.Exit(1)
        console.print(f"[green]✓[/green] Refresh requested for @{username.lstrip('@')}")

    asyncio.run(run())


@app.command("cross-check")
def cross_check(
    username: str = typer.Argument(..., help="X username"),
):
    """Compare the cached profile's join date with the authority's copy."""
    config = EngineConfig()

    async def run():
        async with ProfileEngine(config) as engine:
            result = await engine.cross_check(username)
        console.print(f"@{username.lstrip('@')}: {result.value}")

    asyncio.run(run())


@app.command()
def budget():
    """Show the validator budget for this node."""
    config = EngineConfig()

    async def run():
        async with ProfileEngine(config) as engine:
            info = await engine.budget()
            node_id = engine.validator.node_id if engine.validator else None

        if info is None:
            console.print("Peer validation unavailable (no fetch credentials configured)")
            raise typer.Exit(1)

        console.print(f"Node: {node_id}")
        console.print(f"Remaining: {info.remaining}/{info.capacity}")
        console.print(f"Resets in: {int(info.seconds_until_reset // 60)} min")

    asyncio.run(run())


def _print_record(record: ProfileRecord):
    """Print a profile as a table."""
    table = Table(title=f"@{record.username}", show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")

    country = record.location_country
    table.add_row("Display Name", record.display_name or "-")
    table.add_row("Tier", str(record.tier) if record.tier is not None else "-")
    table.add_row("Based In", record.account_based_in or "-")
    table.add_row("Connected Via", record.connected_via or "-")
    table.add_row("Location", f"{flag_emoji(country)} {country}" if country else "-")
    table.add_row("VPN", "✓" if record.vpn_detected else "✗")
    table.add_row("Joined", str(record.created_at.date()) if record.created_at else "-")
    table.add_row("Username Changes", str(record.username_changes))
    if record.party:
        table.add_row("Party", str(record.party))
    if record.cache_source:
        table.add_row("Source", str(record.cache_source))

    console.print(table)


if __name__ == "__main__":
    app()
