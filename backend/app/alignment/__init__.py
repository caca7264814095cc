"""Prompt node to canonical node scoring, classification and persistence."""

from .classifier import NO_CANDIDATES_REASON, AlignmentClassifier, build_match_reason
from .collisions import resolve_collisions
from .persistence import AlignmentPersister, AlignmentStore
from .scoring import CandidateScore, NodeSimilarityScorer

__all__ = [
    "AlignmentClassifier",
    "AlignmentPersister",
    "AlignmentStore",
    "CandidateScore",
    "NO_CANDIDATES_REASON",
    "NodeSimilarityScorer",
    "build_match_reason",
    "resolve_collisions",
]
