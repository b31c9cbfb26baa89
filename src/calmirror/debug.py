"""
Rich rendering of mirrored calendar data.

Importable functions:
  list_collections(collections, console)  render discovered collections as a table
  render_agenda(events, todos, console)   render events and todos for a range
  dump_event(event, console)              render one event in a Panel
  render_status(data, console)            per-collection token state and counts
"""

from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from calmirror.models import CollectionInfo
from calmirror.models import Event
from calmirror.models import Todo
from calmirror.models import TokenState
from calmirror.store import CalendarData

_TOKEN_LABELS = {
    TokenState.NEVER_SYNCED: ("never synced", "dim"),
    TokenState.SYNCED_NO_TOKEN: ("synced, awaiting token", "yellow"),
    TokenState.HAS_TOKEN: ("incremental", "green"),
    TokenState.INCREMENTAL_UNSUPPORTED: ("full fetch only", "yellow"),
}


def _fmt(value: datetime | None, all_day: bool = False) -> str:
    if value is None:
        return "—"
    return value.strftime("%Y-%m-%d") if all_day else value.strftime("%Y-%m-%d %H:%M")


def _swatch(color: str | None) -> Text:
    if not color:
        return Text("")
    # Unparseable colour styles render as plain text.
    return Text("● ", style=color) + Text(color, style="dim")


def list_collections(collections: list[CollectionInfo], console: Console) -> None:
    """Render discovered collections as a Rich table."""
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Colour")
    table.add_column("Sync")
    table.add_column("URL", style="dim", overflow="fold")

    for collection in sorted(collections, key=lambda c: c.name.lower()):
        sync = (
            Text("incremental", style="green")
            if collection.supports_sync
            else Text("full only", style="yellow")
        )
        table.add_row(collection.name, _swatch(collection.color), sync, collection.url)

    console.print(table)


def render_agenda(
    events: list[Event], todos: list[Todo], console: Console, title: str = "Agenda"
) -> None:
    events_table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    events_table.add_column("Start")
    events_table.add_column("End")
    events_table.add_column("Summary", style="bold")
    events_table.add_column("Calendar")
    for event in sorted(events, key=lambda e: (e.start, e.summary)):
        summary = Text(event.summary)
        if event.rrule:
            summary.append(" ↻", style="dim")
        events_table.add_row(
            _fmt(event.start, event.all_day),
            _fmt(event.end, event.all_day),
            summary,
            Text(event.calendar_name, style=event.calendar_color or ""),
        )
    console.print(Panel(events_table, title=f"[bold]{title}[/bold] ({len(events)} events)"))

    if not todos:
        return
    todo_table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    todo_table.add_column("Due")
    todo_table.add_column("P", justify="right")
    todo_table.add_column("Summary", style="bold")
    todo_table.add_column("Status")
    todo_table.add_column("%", justify="right")
    for todo in sorted(todos, key=lambda t: (t.due is None, t.due or datetime.max, t.summary)):
        done = todo.status in ("COMPLETED", "CANCELLED")
        todo_table.add_row(
            _fmt(todo.due),
            str(todo.priority) if todo.priority else "",
            Text(todo.summary, style="strike dim" if done else ""),
            todo.status,
            str(todo.percent_complete) if todo.percent_complete is not None else "",
        )
    console.print(Panel(todo_table, title=f"[bold]Todos[/bold] ({len(todos)})"))


def dump_event(event: Event, console: Console) -> None:
    """Render a single event as a Rich Panel."""
    lines = Text()

    def row(label: str, value) -> None:
        if value is None or value == []:
            return
        lines.append(f"  {label:<10}: ", style="bold cyan")
        lines.append(f"{value}\n")

    row("UID", event.uid)
    row("Start", _fmt(event.start, event.all_day))
    row("End", _fmt(event.end, event.all_day))
    row("Calendar", event.calendar_name)
    row("Location", event.location)
    row("Status", event.status)
    row("RRULE", event.rrule)
    for ex in event.exdates:
        row("EXDATE", _fmt(ex))
    row("ETag", event.etag)
    if event.description:
        lines.append(f"\n{event.description}\n", style="dim")

    console.print(Panel(lines, title=f"[bold]{event.summary}[/bold]", expand=False))


def render_status(data: CalendarData, console: Console) -> None:
    """Per-collection token state and item counts."""
    urls = set(data.sync_tokens)
    urls.update(e.calendar_url for e in data.events)
    urls.update(t.calendar_url for t in data.todos)
    names = {e.calendar_url: e.calendar_name for e in data.events}
    names.update({t.calendar_url: t.calendar_name for t in data.todos})

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Calendar", style="bold")
    table.add_column("Events", justify="right")
    table.add_column("Todos", justify="right")
    table.add_column("Sync state")
    for url in sorted(urls, key=lambda u: names.get(u, u).lower()):
        label, style = _TOKEN_LABELS[data.token_for(url).state]
        table.add_row(
            Text(names.get(url, url), style=data.calendar_colors.get(url) or ""),
            str(sum(1 for e in data.events if e.calendar_url == url)),
            str(sum(1 for t in data.todos if t.calendar_url == url)),
            Text(label, style=style),
        )

    console.print(Panel(table, title=f"[bold]Last sync:[/bold] {_fmt(data.last_sync)}", expand=False))
