"""Alignment run orchestration and per-scope serialization."""

from backend.app.orchestration.locks import KeyedLockRegistry, alignment_lock_key, canonical_lock_key
from backend.app.orchestration.orchestrator import (
    AlignmentOrchestrator,
    PromptNodeSource,
    build_orchestrator,
    count_statuses,
    sort_report_items,
)

__all__ = [
    "AlignmentOrchestrator",
    "KeyedLockRegistry",
    "PromptNodeSource",
    "alignment_lock_key",
    "build_orchestrator",
    "canonical_lock_key",
    "count_statuses",
    "sort_report_items",
]
