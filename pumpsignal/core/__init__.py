"""Per-token state and the pure entry pipeline: filters, signals and score."""

from .filters import FilterResult, evaluate_filters, prefilter_transaction
from .scoring import TokenScore, compute_score
from .signals import SignalEvaluation, evaluate_signals
from .tracker import TokenRegistry, TokenTracker
from .window import WindowedAggregator

__all__ = [
    "FilterResult",
    "SignalEvaluation",
    "TokenRegistry",
    "TokenScore",
    "TokenTracker",
    "WindowedAggregator",
    "compute_score",
    "evaluate_filters",
    "evaluate_signals",
    "prefilter_transaction",
]
