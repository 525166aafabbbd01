"""Live terminal progress rendering with rich."""

from typing import Optional

from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text

from cloudock.core.ports.outbound.progress import IProgressSink

STATUS_STYLES = {
    "RUNNING": "green",
    "ACTIVE": "green",
    "DELETED": "green",
    "DONE": "green",
    "PROVISIONING": "yellow",
    "UPDATING": "yellow",
    "REBOOT": "yellow",
    "BUILD": "yellow",
    "DELETING": "yellow",
    "PULLING": "yellow",
    "PULLING FS LAYER": "yellow",
    "WAITING": "yellow",
    "DOWNLOADING": "yellow",
    "EXTRACTING": "yellow",
    "PULL COMPLETE": "green",
}


def status_style(status: str) -> str:
    """Color of a status cell; unknown statuses are red."""
    return STATUS_STYLES.get(status.upper(), "red")


def render_table(
    title: str,
    headers: list[str],
    rows: list[list[str]],
    status_column: Optional[str] = "Status",
) -> Table:
    """Build a rich table, coloring the status column when present."""
    table = Table(title=title)
    for header in headers:
        table.add_column(header, style="cyan" if header in ("Id", "Container") else None)

    status_index = headers.index(status_column) if status_column in headers else None
    for row in rows:
        cells: list[str | Text] = list(row)
        if status_index is not None and status_index < len(cells):
            value = row[status_index]
            cells[status_index] = Text(value, style=status_style(value))
        table.add_row(*cells)
    return table


class RichLiveProgressSink(IProgressSink):
    """Redraws a rich table in place on every tick."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()
        self._live: Optional[Live] = None

    def update(self, title: str, headers: list[str], rows: list[list[str]]) -> None:
        table = render_table(title, headers, rows)
        if self._live is None:
            self._live = Live(table, console=self._console, auto_refresh=False)
            self._live.start()
        self._live.update(table, refresh=True)

    def done(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None
