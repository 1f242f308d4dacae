"""Aggregation and derivation engines."""

from .attention import AttentionClassifier, classify_urgency
from .board import BoardDerivationEngine, board_sort_key
from .policy import BoardPolicy, policy_from_config
from .registry import AggregationRegistry
from .titles import CliSummarizer, NullSummarizer, Summarizer
from .workflow import WorkflowScanner

__all__ = [
    "AggregationRegistry",
    "AttentionClassifier",
    "BoardDerivationEngine",
    "BoardPolicy",
    "CliSummarizer",
    "NullSummarizer",
    "Summarizer",
    "WorkflowScanner",
    "board_sort_key",
    "classify_urgency",
    "policy_from_config",
]
