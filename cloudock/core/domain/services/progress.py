"""Live progress projection of in-flight entities."""

import asyncio
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from typing import Optional

import structlog

from cloudock.core.ports.outbound.progress import IProgressSink, NullProgressSink

logger = structlog.get_logger(__name__)


class ProgressTable:
    """
    Keyed rows of display fields, redrawn on a fixed tick.

    Rows are written only from the event loop thread, so no locking is needed.
    Insertion order of keys is kept for display.

    Usage:
        table = ProgressTable("Nodes", ["Id", "Name", "Address", "Status"], sink)
        async with table.live(interval=1.0):
            table.set("abcde..", ["abcde..", "c-web-1", "", "BUILD"])
    """

    def __init__(
        self,
        title: str,
        headers: list[str],
        sink: Optional[IProgressSink] = None,
    ):
        self._title = title
        self._headers = list(headers)
        self._sink = sink or NullProgressSink()
        self._rows: dict[str, list[str]] = {}
        self._ticks = 0

    @property
    def headers(self) -> list[str]:
        return list(self._headers)

    @property
    def ticks(self) -> int:
        """Number of redraws performed so far."""
        return self._ticks

    def set(self, key: str, row: list[str]) -> None:
        """Insert or replace the row for an entity."""
        self._rows[key] = [str(cell) for cell in row]

    def remove(self, key: str) -> None:
        self._rows.pop(key, None)

    def get(self, key: str) -> Optional[list[str]]:
        return self._rows.get(key)

    def rows(self) -> list[list[str]]:
        return [list(row) for row in self._rows.values()]

    def __len__(self) -> int:
        return len(self._rows)

    def redraw(self) -> None:
        """Push the current rows to the sink."""
        self._ticks += 1
        self._sink.update(self._title, self.headers, self.rows())

    @asynccontextmanager
    async def live(self, interval: float = 1.0) -> AsyncIterator["ProgressTable"]:
        """Redraw every interval until the block exits, then draw a final frame."""
        task = asyncio.create_task(self._redraw_loop(interval))
        try:
            yield self
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            self.redraw()
            self._sink.done()

    async def _redraw_loop(self, interval: float) -> None:
        while True:
            self.redraw()
            await asyncio.sleep(interval)
