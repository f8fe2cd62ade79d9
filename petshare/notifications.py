"""User-facing notifications (toasts).

Mutation executors and views report outcomes through a ``Notifier``. The
notifier keeps a history for the page session and fans each toast out to
listeners; ``RichToastRenderer`` is a listener that prints toasts to a Rich
console.

Example:
    >>> notifier = Notifier()
    >>> notifier.add_listener(RichToastRenderer())
    >>> notifier.error("Failed to add comment")
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from rich.console import Console
from rich.panel import Panel

from petshare.logging import logger
from petshare.utils import utc_now


class ToastVariant(StrEnum):
    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class Toast:
    """A transient message shown to the user."""

    title: str
    description: str | None = None
    variant: ToastVariant = ToastVariant.DEFAULT
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_error(self) -> bool:
        return self.variant == ToastVariant.DESTRUCTIVE


ToastListener = Callable[[Toast], None]


class Notifier:
    """Collects toasts and forwards them to listeners.

    Only the newest ``max_history`` toasts are kept.
    """

    def __init__(self, max_history: int = 100) -> None:
        self.max_history = max_history
        self.history: list[Toast] = []
        self._listeners: list[ToastListener] = []

    def add_listener(self, listener: ToastListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def show(self, toast: Toast) -> Toast:
        self.history.append(toast)
        if len(self.history) > self.max_history:
            del self.history[: -self.max_history]
        for listener in list(self._listeners):
            try:
                listener(toast)
            except Exception:
                logger.exception("Toast listener raised")
        return toast

    def success(self, description: str | None = None, title: str = "Success!") -> Toast:
        return self.show(Toast(title=title, description=description))

    def error(self, description: str | None = None, title: str = "Error") -> Toast:
        return self.show(Toast(title=title, description=description, variant=ToastVariant.DESTRUCTIVE))

    @property
    def last(self) -> Toast | None:
        return self.history[-1] if self.history else None

    def clear(self) -> None:
        self.history.clear()


class RichToastRenderer:
    """Print toasts as Rich panels.

    Args:
        console: Target console (defaults to a stderr console)
    """

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True)

    def __call__(self, toast: Toast) -> None:
        style = "red" if toast.is_error else "green"
        self.console.print(
            Panel(
                toast.description or "",
                title=f"[bold]{toast.title}[/bold]",
                border_style=style,
                expand=False,
            )
        )


__all__ = ["Toast", "ToastVariant", "Notifier", "RichToastRenderer", "ToastListener"]
