"""Card title derivation and the optional summarizer fallback."""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
import subprocess
from typing import Callable, Optional, Protocol

from ..domain.models import Epoch, Session

logger = logging.getLogger(__name__)

# UUID-ish prefixes, ``word-slug123456`` style ids and bare hex hashes.
OPAQUE_NAME_PATTERN = re.compile(r"^[0-9a-f]{8}-|^[a-z]+-[a-z0-9]{6,}$|^[0-9a-f]{16,}$", re.IGNORECASE)

TITLE_MAX_CHARS = 50
TITLE_TRUNCATE_AT = 47
PREVIEW_MESSAGE_COUNT = 3
PREVIEW_MAX_CHARS = 100
DEFAULT_SUMMARIZER_COMMAND = "claude --print -p"
DEFAULT_SUMMARIZER_TIMEOUT_SECONDS = 10.0


class Summarizer(Protocol):
    """Best-effort collaborator that names a session from message previews."""
    def summarize(self, previews: list[str]) -> Optional[str]:
        ...


class NullSummarizer:
    """Summarizer that never produces a title."""

    def summarize(self, previews: list[str]) -> Optional[str]:
        return None


class CliSummarizer:
    """Ask an external CLI for a short session title, bounded by a timeout."""

    def __init__(
        self,
        command: str = DEFAULT_SUMMARIZER_COMMAND,
        *,
        timeout_seconds: float = DEFAULT_SUMMARIZER_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the CliSummarizer.

        Args:
            command (str): Command line prefix; the prompt is appended as the
                final argument.
            timeout_seconds (float): Upper bound for one summarizer call.
        """
        self.command = command
        self.timeout_seconds = timeout_seconds

    def summarize(self, previews: list[str]) -> Optional[str]:
        """Run the summarizer command and return its trimmed output.

        Args:
            previews (list[str]): Short message previews describing the session.

        Returns:
            Optional[str]: Title text, or ``None`` on failure, timeout or empty
            output.
        """
        if not previews:
            return None
        prompt = f"Summarize this work session in 5 words or fewer: {' | '.join(previews)}"
        try:
            result = subprocess.run(
                [*shlex.split(self.command), prompt],
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            logger.debug("Summarizer timed out after %ss", self.timeout_seconds)
            return None
        except (OSError, ValueError):
            logger.debug("Summarizer command unavailable: %s", self.command, exc_info=True)
            return None
        if result.returncode != 0:
            logger.debug("Summarizer exited with %s", result.returncode)
            return None
        text = (result.stdout or "").strip()
        return text or None


def truncate_title(text: str) -> str:
    """Shorten long text to a card-sized title with a trailing ellipsis."""
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_TRUNCATE_AT] + "..."
    return text


def _from_description(session: Session) -> Optional[str]:
    description = session.metadata.get("description") if isinstance(session.metadata, dict) else None
    if isinstance(description, str) and description.strip():
        return description
    return None


def _from_name(session: Session) -> Optional[str]:
    if session.name and not OPAQUE_NAME_PATTERN.search(session.name):
        return session.name
    return None


def _from_first_task(session: Session) -> Optional[str]:
    if session.tasks and session.tasks[0].subject:
        return session.tasks[0].subject
    return None


def _from_first_message(session: Session) -> Optional[str]:
    if not session.messages:
        return None
    first = session.messages[0]
    text = first.summary or first.content
    return truncate_title(text) if text else None


# Evaluated in order; the first non-empty result wins.
TITLE_RULES: tuple[Callable[[Session], Optional[str]], ...] = (
    _from_description,
    _from_name,
    _from_first_task,
    _from_first_message,
)


class TitleResolver:
    """Resolve and cache card titles per epoch.

    The summarizer fallback can take seconds. Inside a running event loop it is
    run on a worker thread: ``resolve`` returns the session name meanwhile, and
    ``on_resolved`` fires once the cached title is ready for the next
    evaluation. Without a running loop it is called inline.
    """

    def __init__(
        self,
        summarizer: Optional[Summarizer] = None,
        *,
        on_resolved: Optional[Callable[[], None]] = None,
    ) -> None:
        self._summarizer: Summarizer = summarizer or NullSummarizer()
        self._fallback_cache: dict[str, str] = {}
        self._pending: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self.on_resolved = on_resolved

    def resolve(self, session: Session, epoch: Epoch) -> str:
        """Return the epoch's title, deriving and caching it on first use."""
        if epoch.title:
            return epoch.title
        for rule in TITLE_RULES:
            title = rule(session)
            if title:
                epoch.title = title
                return title
        fallback = self._fallback(session, epoch)
        if fallback is None:
            return session.name
        epoch.title = fallback
        return fallback

    def _fallback(self, session: Session, epoch: Epoch) -> Optional[str]:
        card_id = epoch.card_id
        cached = self._fallback_cache.get(card_id)
        if cached is not None:
            return cached
        if card_id in self._pending:
            return None
        previews = [
            message.summary or message.content[:PREVIEW_MAX_CHARS]
            for message in session.messages[:PREVIEW_MESSAGE_COUNT]
        ]
        previews = [preview for preview in previews if preview]
        if not previews:
            self._fallback_cache[card_id] = session.name
            return session.name
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            result = self._summarize(card_id, previews) or session.name
            self._fallback_cache[card_id] = result
            return result
        self._pending.add(card_id)
        task = loop.create_task(self._summarize_off_loop(card_id, previews, session.name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return None

    def _summarize(self, card_id: str, previews: list[str]) -> Optional[str]:
        try:
            return self._summarizer.summarize(previews)
        except Exception:
            logger.debug("Summarizer failed for %s", card_id, exc_info=True)
            return None

    async def _summarize_off_loop(self, card_id: str, previews: list[str], name: str) -> None:
        title = await asyncio.to_thread(self._summarize, card_id, previews)
        self._fallback_cache[card_id] = title or name
        self._pending.discard(card_id)
        if self.on_resolved is not None:
            self.on_resolved()
