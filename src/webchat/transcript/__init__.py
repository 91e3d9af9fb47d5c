"""Transcript state: message store and reconciliation."""

from .reconciler import ReconcileResult, TranscriptReconciler, merge_range, show_tool_placeholder
from .store import HistoryIndexMap, IndexTracker, MessageStore

__all__ = [
    "HistoryIndexMap",
    "IndexTracker",
    "MessageStore",
    "ReconcileResult",
    "TranscriptReconciler",
    "merge_range",
    "show_tool_placeholder",
]
