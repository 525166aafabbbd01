"""Progress sink outbound port interface."""

from abc import ABC, abstractmethod


class IProgressSink(ABC):
    """Line-redrawing renderer fed with progress table rows on every tick."""

    @abstractmethod
    def update(self, title: str, headers: list[str], rows: list[list[str]]) -> None:
        """Redraw the view with the current rows."""
        pass

    @abstractmethod
    def done(self) -> None:
        """Finish the view, leaving the last frame in place."""
        pass


class NullProgressSink(IProgressSink):
    """Sink that renders nothing."""

    def update(self, title: str, headers: list[str], rows: list[list[str]]) -> None:
        pass

    def done(self) -> None:
        pass
