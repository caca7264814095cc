"""Weighted multi-factor similarity between prompt nodes and canonical nodes."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import AbstractSet, List, Mapping, Optional, Sequence

from backend.app.canonicalization.text import clamp01, jaccard_similarity, normalize_label, tokenize
from backend.app.config import ScoringConfig
from backend.app.contracts import CanonicalFlowNode, PromptNode


CUSTOM_FAMILY = "custom"


@dataclass(frozen=True)
class CandidateScore:
    """Similarity of one canonical node to a prompt node with its sub-scores."""

    canonical_node: CanonicalFlowNode
    score: float
    token_score: float
    label_score: float
    type_score: float
    support_score: float


class NodeSimilarityScorer:
    """Score prompt nodes against canonical nodes without any external ranking library."""

    def __init__(self, config: ScoringConfig, stop_words: AbstractSet[str]) -> None:
        self._config = config
        self._stop_words = frozenset(stop_words)
        self._families: Mapping[str, str] = config.family_lookup()

    def type_family(self, node_type: str) -> str:
        """Return the family of a node type, ``custom`` when it is unlisted."""

        return self._family_of(normalize_label(node_type))

    def label_similarity(self, left: str, right: str) -> float:
        """Compare two labels by equality, containment, then shared-word ratio."""

        normalized_left = normalize_label(left)
        normalized_right = normalize_label(right)
        if not normalized_left or not normalized_right:
            return 0.0
        if normalized_left == normalized_right:
            return 1.0
        if normalized_left in normalized_right or normalized_right in normalized_left:
            return self._config.substring_label_score
        left_words = set(normalized_left.split(" "))
        right_words = set(normalized_right.split(" "))
        denominator = max(len(left_words), len(right_words))
        if denominator == 0:
            return 0.0
        return clamp01(len(left_words & right_words) / denominator)

    def type_compatibility(self, prompt_type: str, canonical_type: str) -> float:
        """Score node types as equal, same family, or unrelated."""

        left = normalize_label(prompt_type)
        right = normalize_label(canonical_type)
        if left == right:
            return 1.0
        if self._family_of(left) == self._family_of(right):
            return self._config.family_type_score
        return self._config.mismatch_type_score

    def support_score(self, support_count: int) -> float:
        """Reward canonical nodes backed by more flows, with diminishing returns."""

        return clamp01(math.log2(max(0, support_count) + 1) / self._config.support_log_divisor)

    def score(self, prompt_node: PromptNode, canonical_node: CanonicalFlowNode) -> CandidateScore:
        """Compute the weighted match score of ``canonical_node`` for ``prompt_node``.

        Args:
            prompt_node: Authored prompt node.
            canonical_node: Candidate canonical node.

        Returns:
            CandidateScore: Combined score clamped to [0, 1] with its four sub-scores.
        """

        token_score = jaccard_similarity(
            self._tokens(prompt_node.label, prompt_node.content),
            self._tokens(canonical_node.label, canonical_node.content),
        )
        label_score = self.label_similarity(prompt_node.label, canonical_node.label)
        type_score = self.type_compatibility(prompt_node.type, canonical_node.type)
        support = self.support_score(canonical_node.support_count)
        combined = clamp01(
            token_score * self._config.token_weight
            + label_score * self._config.label_weight
            + type_score * self._config.type_weight
            + support * self._config.support_weight
        )
        return CandidateScore(
            canonical_node=canonical_node,
            score=combined,
            token_score=token_score,
            label_score=label_score,
            type_score=type_score,
            support_score=support,
        )

    def select_best(
        self, prompt_node: PromptNode, canonical_nodes: Sequence[CanonicalFlowNode]
    ) -> Optional[CandidateScore]:
        """Return the highest scoring candidate; ties keep the earliest candidate."""

        best: Optional[CandidateScore] = None
        for canonical_node in canonical_nodes:
            candidate = self.score(prompt_node, canonical_node)
            if best is None or candidate.score > best.score:
                best = candidate
        return best

    def _family_of(self, normalized_type: str) -> str:
        return self._families.get(normalized_type, CUSTOM_FAMILY)

    def _tokens(self, label: str, content: str) -> List[str]:
        return tokenize(label, content, self._stop_words)


__all__ = ["CandidateScore", "NodeSimilarityScorer", "CUSTOM_FAMILY"]
