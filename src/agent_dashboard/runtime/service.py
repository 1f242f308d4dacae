"""Dashboard service: runs the derivation pipeline on every registry change."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import DashboardConfig
from .domain.models import DashboardState, Workspace
from .engine.attention import AttentionClassifier
from .engine.board import BoardDerivationEngine
from .engine.registry import AggregationRegistry
from .engine.titles import CliSummarizer, NullSummarizer, Summarizer
from .engine.workflow import WorkflowScanner
from .events.bus import EventBus
from .sources.base import SessionSource
from .sources.claude_code import ClaudeCodeSource

logger = logging.getLogger(__name__)


class DashboardService:
    """Own the consolidated state and the engines that derive it."""

    def __init__(
        self,
        *,
        registry: Optional[AggregationRegistry] = None,
        attention: Optional[AttentionClassifier] = None,
        board: Optional[BoardDerivationEngine] = None,
        workflow: Optional[WorkflowScanner] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        """Initialize the DashboardService.

        Args:
            registry (Optional[AggregationRegistry]): Source registry; a fresh one
                is created when omitted.
            attention (Optional[AttentionClassifier]): Attention classifier.
            board (Optional[BoardDerivationEngine]): Board engine.
            workflow (Optional[WorkflowScanner]): Work item scanner.
            bus (Optional[EventBus]): Broadcast target; ``None`` disables pushes.
        """
        self.registry = registry or AggregationRegistry()
        self.attention = attention or AttentionClassifier()
        self.board = board or BoardDerivationEngine()
        self.workflow = workflow or WorkflowScanner()
        self.bus = bus
        self.state = DashboardState()
        self.started = False
        self.registry.on_state_change(self.refresh)
        self.board.on_title_resolved(self._rederive_board)

    @classmethod
    def from_config(cls, config: DashboardConfig, *, bus: Optional[EventBus] = None) -> "DashboardService":
        """Build a service with the sources and policies named in ``config``."""
        summarizer: Summarizer = NullSummarizer()
        if config.summarizer.enabled:
            summarizer = CliSummarizer(config.summarizer.command, timeout_seconds=config.summarizer.timeout_seconds)
        service = cls(board=BoardDerivationEngine(policy=config.board, summarizer=summarizer), bus=bus)
        if config.claude_code.enabled:
            service.add_source(
                ClaudeCodeSource(
                    config.claude_code.home,
                    active_threshold_seconds=config.claude_code.active_threshold_seconds,
                    watch_debounce_seconds=config.claude_code.watch_debounce_seconds,
                )
            )
        return service

    def add_source(self, source: SessionSource) -> None:
        self.registry.register_source(source)

    async def start(self) -> None:
        """Onboard all registered sources and compute the first state."""
        await self.registry.initialize()
        self.started = True
        logger.info(
            "Dashboard started with %d workspaces and %d attention items",
            len(self.state.workspaces),
            len(self.state.attention_items),
        )

    def stop(self) -> None:
        """Stop watchers and drop pending broadcasts."""
        self.registry.dispose()
        if self.bus is not None:
            self.bus.close()

    def refresh(self, workspaces: list[Workspace]) -> DashboardState:
        """Re-derive attention, board and work items for a workspace snapshot.

        Args:
            workspaces (list[Workspace]): Consolidated workspaces from the registry.

        Returns:
            DashboardState: The new consolidated state.
        """
        state = DashboardState(workspaces=list(workspaces), work_items=self.state.work_items)
        state.attention_items = self.attention.evaluate(state)
        state.board_cards = self.board.evaluate(state)
        try:
            state.work_items = self.workflow.scan(state.workspaces)
        except Exception:
            logger.warning("Workflow scan failed; keeping previous work items", exc_info=True)
        self.state = state
        self._publish()
        return state

    def dismiss_card(self, card_id: str) -> DashboardState:
        """Dismiss a finished board card and publish the updated board.

        Args:
            card_id (str): Identifier of the card to dismiss.

        Returns:
            DashboardState: State after the board was re-evaluated.

        Raises:
            LookupError: If the card does not exist or was already dismissed.
            ValueError: If the card is not in the done stage.
        """
        epoch = self.board.find_epoch(card_id)
        if epoch is None or self.board.is_dismissed(card_id):
            raise LookupError(f"Card not found: {card_id}")
        if not self.board.dismiss(card_id):
            raise ValueError(f"Card {card_id} is not in done stage (stage: {epoch.last_known_stage})")
        self._rederive_board()
        return self.state

    def _rederive_board(self) -> None:
        self.state.board_cards = self.board.evaluate(self.state)
        self._publish()

    def _publish(self) -> None:
        if self.bus is not None:
            self.bus.emit_state(self.state)
