"""Source registry that merges session snapshots into per-workspace state."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from ..domain.models import Session, Workspace, WorkspaceRef
from ..sources.base import Disposable, SessionSource

logger = logging.getLogger(__name__)

StateChangeCallback = Callable[[list[Workspace]], None]


class AggregationRegistry:
    """Onboard workspaces from registered sources and keep their sessions merged.

    All merges run on the event loop. Each merge made from a watch callback
    fires one synchronous notification; coalescing bursts is left to the
    caller.
    """

    def __init__(self) -> None:
        self._sources: list[SessionSource] = []
        self._workspaces: dict[str, Workspace] = {}
        self._listeners: list[StateChangeCallback] = []
        self._watched: set[str] = set()
        self._watch_handles: dict[str, Disposable] = {}
        self._source_handles: list[Disposable] = []
        self._pending: set[asyncio.Task[None]] = set()

    def register_source(self, source: SessionSource) -> None:
        """Add a source to be detected on ``initialize``."""
        self._sources.append(source)

    @property
    def sources(self) -> list[SessionSource]:
        return list(self._sources)

    def on_state_change(self, callback: StateChangeCallback) -> None:
        """Subscribe to consolidated workspace snapshots."""
        self._listeners.append(callback)

    def workspaces(self) -> list[Workspace]:
        """Return the known workspaces in onboarding order."""
        return list(self._workspaces.values())

    async def initialize(self) -> None:
        """Detect and onboard every workspace of every registered source.

        A source whose ``detect`` fails is skipped; the remaining sources are
        still onboarded. Listeners are notified once at the end.
        """
        for source in self._sources:
            try:
                refs = await source.detect()
            except Exception:
                logger.warning("Source %s failed to detect workspaces", source.name, exc_info=True)
                refs = []
            for ref in refs:
                await self.onboard(source, ref)

            watch_for_new = getattr(source, "watch_for_new", None)
            if callable(watch_for_new):
                try:
                    handle = watch_for_new(
                        lambda ref, source=source: self._schedule_onboard(source, ref),
                        lambda ref, source=source: self._handle_removed(source, ref),
                    )
                except Exception:
                    logger.warning("Source %s failed to watch for new workspaces", source.name, exc_info=True)
                else:
                    self._source_handles.append(handle)
        self._notify()

    async def onboard(self, source: SessionSource, ref: WorkspaceRef) -> bool:
        """Scan, merge and watch a workspace unless its key is already known.

        Args:
            source (SessionSource): Source that owns ``ref``.
            ref (WorkspaceRef): Workspace to onboard.

        Returns:
            bool: ``True`` when the workspace was newly onboarded.
        """
        key = self._key(source, ref)
        if key in self._watched:
            return False
        self._watched.add(key)

        try:
            session = await source.scan(ref)
        except Exception:
            logger.warning("Initial scan failed for %s; waiting for next change", key, exc_info=True)
        else:
            self._upsert(source, ref, session)

        def _on_change(updated: Session) -> None:
            if key not in self._watched:
                return
            self._upsert(source, ref, updated)
            self._notify()

        try:
            self._watch_handles[key] = source.watch(ref, _on_change)
        except Exception:
            logger.warning("Failed to watch %s", key, exc_info=True)
            self._watched.discard(key)
            return False
        return True

    def remove(self, source: SessionSource, ref: WorkspaceRef) -> bool:
        """Forget a workspace and stop watching it."""
        key = self._key(source, ref)
        self._watched.discard(key)
        handle = self._watch_handles.pop(key, None)
        if handle is not None:
            try:
                handle.dispose()
            except Exception:
                logger.debug("Disposing watch for %s failed", key, exc_info=True)
        return self._workspaces.pop(key, None) is not None

    def dispose(self) -> None:
        """Stop all workspace and namespace watchers."""
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        handles = [*self._watch_handles.values(), *self._source_handles]
        self._watch_handles.clear()
        self._source_handles.clear()
        for handle in handles:
            try:
                handle.dispose()
            except Exception:
                logger.debug("Disposing watcher failed", exc_info=True)

    @staticmethod
    def _key(source: SessionSource, ref: WorkspaceRef) -> str:
        return f"{source.name}:{ref.workspace}"

    def _schedule_onboard(self, source: SessionSource, ref: WorkspaceRef) -> None:
        async def _run() -> None:
            if await self.onboard(source, ref):
                self._notify()

        task = asyncio.get_running_loop().create_task(_run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _handle_removed(self, source: SessionSource, ref: WorkspaceRef) -> None:
        self.remove(source, ref)
        self._notify()

    def _upsert(self, source: SessionSource, ref: WorkspaceRef, session: Session) -> None:
        key = self._key(source, ref)
        workspace: Optional[Workspace] = self._workspaces.get(key)
        if workspace is None:
            workspace = Workspace(id=key, name=ref.workspace, path=ref.path, tool=source.name)
            self._workspaces[key] = workspace
        for idx, existing in enumerate(workspace.sessions):
            if existing.id == session.id:
                workspace.sessions[idx] = session
                return
        workspace.sessions.append(session)

    def _notify(self) -> None:
        snapshot = self.workspaces()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("State change listener failed")
