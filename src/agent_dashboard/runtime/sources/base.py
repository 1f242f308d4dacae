"""Session source protocol and shared disposable helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Protocol

from ..domain.models import Session, WorkspaceRef


class Disposable(Protocol):
    """Handle returned by watch calls; ``dispose`` stops observing."""
    def dispose(self) -> None:
        ...


@dataclass
class CompositeDisposable:
    """Dispose a group of handles together, tolerating repeated calls."""
    items: list[Disposable] = field(default_factory=list)

    def add(self, item: Disposable) -> None:
        self.items.append(item)

    def dispose(self) -> None:
        items, self.items = self.items, []
        for item in items:
            item.dispose()


class SessionSource(Protocol):
    """Adapter contract used by the registry to read one kind of session data.

    ``watch_for_new`` is optional; the registry probes for it with ``getattr``.
    """
    name: str

    async def detect(self) -> list[WorkspaceRef]:
        """Enumerate currently discoverable workspaces.

        Returns:
            list[WorkspaceRef]: Discovered workspaces; empty when the backing
            directories are missing. Must not raise for missing data.
        """
        ...

    async def scan(self, ref: WorkspaceRef) -> Session:
        """Produce a full normalized snapshot for one workspace.

        Args:
            ref (WorkspaceRef): Workspace to read.

        Returns:
            Session: Snapshot where unreadable data degrades to empty defaults.
        """
        ...

    def watch(self, ref: WorkspaceRef, on_change: Callable[[Session], None]) -> Disposable:
        """Observe an onboarded workspace and deliver fresh scans on change.

        Args:
            ref (WorkspaceRef): Workspace to observe.
            on_change (Callable[[Session], None]): Callback invoked on the event
                loop with a fresh ``scan`` result.

        Returns:
            Disposable: Handle that stops observing.
        """
        ...
