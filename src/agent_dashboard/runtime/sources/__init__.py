"""Session sources and the collaborator protocol they implement."""

from .base import CompositeDisposable, Disposable, SessionSource
from .claude_code import ClaudeCodeSource

__all__ = ["ClaudeCodeSource", "CompositeDisposable", "Disposable", "SessionSource"]
