"""
Command-line interface for calmirror.
"""

import logging
import os
import signal
from configparser import ConfigParser
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from calmirror.cache import CacheManager
from calmirror.models import DEFAULT_CACHE_DIR
from calmirror.models import DEFAULT_CONFIG
from calmirror.models import CacheError
from calmirror.models import ConfigError
from calmirror.models import DiscoveryError
from calmirror.models import InvalidDateRange
from calmirror.models import RecurrenceConfig
from calmirror.models import SyncConfig
from calmirror.models import SyncStats
from calmirror.store import CalendarData
from calmirror.store import CalendarStore

CONFIG_SECTION = "calmirror"

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Keep a local, queryable mirror of your CalDAV calendars and task lists.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    cache_dir: Path | None = None
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    cache_dir: Annotated[
        Path | None,
        typer.Option("--cache-dir", help=f"Cache directory (default: {DEFAULT_CACHE_DIR})"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.cache_dir = cache_dir
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return dict(parser[CONFIG_SECTION])


def load_value_or_file(value: str | None) -> str | None:
    """Return ``value``, or the stripped contents of the file it names."""
    if not value:
        return value
    path = Path(value).expanduser()
    try:
        if path.is_file():
            return path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    return value


def validate_credentials(server_url: str | None, username: str | None, password: str | None):
    missing = [
        name
        for name, value in (
            ("server URL", server_url),
            ("username", username),
            ("password", password),
        )
        if not value
    ]
    if missing:
        raise ConfigError(f"Missing {', '.join(missing)}")
    if not server_url.startswith(("http://", "https://")):
        raise ConfigError(f"Server URL must start with http:// or https://: {server_url}")


def _int_setting(config_file: dict[str, str], key: str, default: int) -> int:
    raw = config_file.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ConfigError(f"{key} must be positive, got {value}")
    return value


def _resolve_cache_dir(config_file: dict[str, str]) -> Path:
    if state.cache_dir is not None:
        return state.cache_dir
    if config_file.get("cache_dir"):
        return Path(config_file["cache_dir"]).expanduser()
    return DEFAULT_CACHE_DIR


def build_config(
    server_url: str | None = None,
    username: str | None = None,
    password: str | None = None,
    interval: int | None = None,
) -> SyncConfig:
    """Merge options, CALDAV_* environment variables and the config file, in that order."""
    config_file = _load_config_file(state.config_path)

    server_url = load_value_or_file(
        server_url or os.environ.get("CALDAV_SERVER") or config_file.get("server_url")
    )
    username = load_value_or_file(
        username or os.environ.get("CALDAV_USERNAME") or config_file.get("username")
    )
    password = load_value_or_file(
        password or os.environ.get("CALDAV_PASSWORD") or config_file.get("password")
    )
    validate_credentials(server_url, username, password)

    return SyncConfig(
        server_url=server_url,
        username=username,
        password=password,
        cache_dir=_resolve_cache_dir(config_file),
        sync_interval_minutes=interval or _int_setting(config_file, "sync_interval_minutes", 15),
        max_workers=_int_setting(config_file, "max_workers", 4),
        recurrence=RecurrenceConfig(
            expand_forward_days=_int_setting(config_file, "expand_forward_days", 730),
            expand_backward_days=_int_setting(config_file, "expand_backward_days", 365),
        ),
        verbose=state.verbose,
    )


def _config_or_exit(**kwargs) -> SyncConfig:
    try:
        return build_config(**kwargs)
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/] {e}")
        console.print(
            "Provide credentials via [cyan]--server[/]/[cyan]--username[/]/[cyan]--password[/], "
            f"CALDAV_* environment variables, or [cyan]{state.config_path}[/]."
        )
        raise typer.Exit(1) from None


def _make_transport(cfg: SyncConfig):
    from calmirror.caldav_client import CalDAVTransport

    return CalDAVTransport(cfg.server_url, cfg.username, cfg.password)


def _load_manager(cfg: SyncConfig, transport, fresh: bool):
    from calmirror.sync import SyncManager

    cache = CacheManager(cfg.cache_dir)
    if fresh:
        return SyncManager(cfg, transport, cache, CalendarStore())
    try:
        return SyncManager.from_cache(cfg, transport, cache)
    except CacheError as e:
        console.print(f"[bold red]Cache error:[/] {e}")
        console.print("Run [cyan]calmirror clear-cache[/] or pass [cyan]--fresh[/].")
        raise typer.Exit(1) from None


def _print_stats(stats: SyncStats) -> None:
    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Collections", str(stats.collections))
    results.add_row("Full fetches", str(stats.full_fetches))
    results.add_row("Incremental", str(stats.incremental_fetches))
    if stats.fallbacks:
        results.add_row("Fallbacks", Text(str(stats.fallbacks), style="yellow"))
    results.add_row("Upserted", str(stats.upserted))
    results.add_row("Deleted", str(stats.deleted))
    if stats.purged:
        results.add_row("Purged", str(stats.purged))
    error_val = Text(str(stats.errors))
    if stats.errors == 0:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val)

    console.print(Panel(results, title="[bold]Results[/bold]", expand=False))


def _load_snapshot(cache: CacheManager) -> CalendarData | None:
    try:
        return cache.load()
    except CacheError as e:
        console.print(f"[bold red]Cache error:[/] {e}")
        raise typer.Exit(1) from None


# ---------------------------------------------------------------------------
# Shared options
# ---------------------------------------------------------------------------

_SERVER_OPT = Annotated[
    str | None,
    typer.Option("--server", "-s", help="CalDAV server URL (overrides env and config)"),
]
_USER_OPT = Annotated[
    str | None,
    typer.Option("--username", "-u", help="Username, or a file containing it"),
]
_PASS_OPT = Annotated[
    str | None,
    typer.Option("--password", "-p", help="Password, or a file containing it"),
]
_FRESH = Annotated[
    bool,
    typer.Option("--fresh", help="Ignore the existing cache and start from an empty store"),
]


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------


@app.command()
def sync(
    server: _SERVER_OPT = None,
    username: _USER_OPT = None,
    password: _PASS_OPT = None,
    fresh: _FRESH = False,
) -> None:
    """Run one sync pass and update the local cache."""
    from calmirror.preflight import run_preflight_checks

    cfg = _config_or_exit(server_url=server, username=username, password=password)
    transport = _make_transport(cfg)
    if not run_preflight_checks(cfg, console, transport, check_cache=not fresh):
        raise typer.Exit(1)

    manager = _load_manager(cfg, transport, fresh)
    try:
        stats = manager.sync()
    except DiscoveryError as e:
        console.print(f"[bold red]Sync failed:[/] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None

    _print_stats(stats)
    if stats.errors:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommand: serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    server: _SERVER_OPT = None,
    username: _USER_OPT = None,
    password: _PASS_OPT = None,
    interval: Annotated[
        int | None,
        typer.Option("--interval", "-i", min=1, help="Minutes between passes (overrides config)"),
    ] = None,
    fresh: _FRESH = False,
) -> None:
    """Sync now and then periodically until interrupted."""
    from calmirror.preflight import run_preflight_checks
    from calmirror.scheduler import PeriodicSync

    cfg = _config_or_exit(
        server_url=server, username=username, password=password, interval=interval
    )
    transport = _make_transport(cfg)
    if not run_preflight_checks(cfg, console, transport, check_cache=not fresh):
        raise typer.Exit(1)

    manager = _load_manager(cfg, transport, fresh)
    periodic = PeriodicSync(manager, cfg.sync_interval_minutes * 60)

    info = Text()
    info.append("  Server:    ", style="bold")
    info.append(f"{cfg.server_url}\n")
    info.append("  Cache:     ", style="bold")
    info.append(f"{manager.cache.cache_file}\n")
    info.append("  Interval:  ", style="bold")
    info.append(f"{cfg.sync_interval_minutes} min")
    console.print(Panel(info, title="[bold]calmirror[/bold]"))

    signal.signal(signal.SIGTERM, lambda signum, frame: periodic.stop())
    try:
        periodic.run_forever()
    except KeyboardInterrupt:
        periodic.stop()
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None


# ---------------------------------------------------------------------------
# Subcommand: show
# ---------------------------------------------------------------------------


@app.command()
def show(
    range_expr: Annotated[
        str,
        typer.Argument(
            metavar="RANGE",
            help="today, tomorrow, week, month, YYYY-MM-DD, YYYY-MM-DD:YYYY-MM-DD, ±Nd, ±Nw",
        ),
    ] = "today",
    todos: Annotated[
        bool, typer.Option("--todos/--no-todos", help="Include todos in the listing")
    ] = True,
) -> None:
    """Show cached events (and todos) for a date range."""
    from calmirror.debug import render_agenda
    from calmirror.query import parse_date_range

    try:
        start, end = parse_date_range(range_expr)
    except InvalidDateRange as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None

    cache = CacheManager(_resolve_cache_dir(_load_config_file(state.config_path)))
    data = _load_snapshot(cache)
    if data is None:
        console.print("[yellow]No cache yet; run[/] [cyan]calmirror sync[/] [yellow]first.[/]")
        return

    store = CalendarStore(data)
    with store.read() as view:
        events = view.events_in_range(start, end)
        matching_todos = view.todos_in_range(start, end) if todos else []

    render_agenda(events, matching_todos, console, title=range_expr)


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status() -> None:
    """Show configuration and cache summary."""
    from calmirror.debug import render_status

    config_exists = state.config_path.exists()
    cache = CacheManager(_resolve_cache_dir(_load_config_file(state.config_path)))
    cache_exists = cache.exists()

    cfg_info = Text()
    cfg_info.append("  Config: ", style="bold")
    cfg_info.append(str(state.config_path) + " ")
    cfg_info.append(
        "✓" if config_exists else "(not found)", style="green" if config_exists else "red"
    )
    cfg_info.append("\n  Cache:  ", style="bold")
    cfg_info.append(str(cache.cache_file) + " ")
    cfg_info.append(
        "✓" if cache_exists else "(not found)", style="green" if cache_exists else "yellow"
    )
    console.print(Panel(cfg_info, title="[bold]calmirror status[/bold]"))

    data = _load_snapshot(cache)
    if data is None:
        console.print("[yellow]No cache yet; run[/] [cyan]calmirror sync[/] [yellow]to create it.[/]")
        return
    render_status(data, console)


# ---------------------------------------------------------------------------
# Subcommand: calendars
# ---------------------------------------------------------------------------


@app.command()
def calendars(
    server: _SERVER_OPT = None,
    username: _USER_OPT = None,
    password: _PASS_OPT = None,
) -> None:
    """List the calendars and task lists on the server."""
    from calmirror.debug import list_collections

    cfg = _config_or_exit(server_url=server, username=username, password=password)
    try:
        collections = _make_transport(cfg).discover_collections()
    except DiscoveryError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    list_collections(collections, console)


# ---------------------------------------------------------------------------
# Subcommand: clear-cache
# ---------------------------------------------------------------------------


@app.command("clear-cache")
def clear_cache(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Delete the cached snapshot; the next sync starts from scratch."""
    cache = CacheManager(_resolve_cache_dir(_load_config_file(state.config_path)))
    if not cache.exists():
        console.print("[yellow]No cache to clear.[/]")
        return
    if not yes:
        typer.confirm(f"Delete {cache.cache_file}?", abort=True)
    try:
        cache.clear()
    except CacheError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    console.print(f"[green]Removed[/] {cache.cache_file}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
