"""Translate best-match scores into coverage verdicts."""
from __future__ import annotations

from typing import Optional

from backend.app.canonicalization.text import percent
from backend.app.config import AlignmentConfig
from backend.app.contracts import CoverageItem, CoverageStatus, PromptNode

from .scoring import CandidateScore

NO_CANDIDATES_REASON = "No canonical node candidates available."


def build_match_reason(best: CandidateScore) -> str:
    """Return the pipe-joined diagnostic explaining a match."""

    return " | ".join(
        [
            f'Matched "{best.canonical_node.label}"',
            f"confidence {percent(best.score)}",
            f"token overlap {percent(best.token_score)}",
            f"label similarity {percent(best.label_score)}",
            f"type compatibility {percent(best.type_score)}",
            f"support {percent(best.support_score)}",
        ]
    )


class AlignmentClassifier:
    """Classify prompt nodes as covered, overconstrained or uncovered.

    The floor threshold is both the minimum score for a real candidate and the
    minimum confidence for a persisted alignment.
    """

    def __init__(self, config: AlignmentConfig) -> None:
        self._covered_threshold = config.covered_threshold
        self._floor_threshold = config.floor_threshold

    @property
    def floor_threshold(self) -> float:
        return self._floor_threshold

    def status_for(self, score: float) -> CoverageStatus:
        """Return the status implied by a best-match score alone."""

        if score < self._floor_threshold:
            return CoverageStatus.UNCOVERED
        if score >= self._covered_threshold:
            return CoverageStatus.COVERED
        return CoverageStatus.OVERCONSTRAINED

    def classify(self, prompt_node: PromptNode, best: Optional[CandidateScore]) -> CoverageItem:
        """Build the coverage verdict for a prompt node from its best candidate.

        Args:
            prompt_node: Prompt node being classified.
            best: Highest scoring canonical candidate, ``None`` when there are none.

        Returns:
            CoverageItem: Verdict carrying status, confidence and an auditable reason.
        """

        if best is None:
            return CoverageItem(
                prompt_node_id=prompt_node.id,
                prompt_label=prompt_node.label,
                prompt_type=prompt_node.type,
                status=CoverageStatus.UNCOVERED,
                confidence=0.0,
                reason=NO_CANDIDATES_REASON,
            )

        status = self.status_for(best.score)
        if status is CoverageStatus.UNCOVERED:
            reason = f'Weak match ({percent(best.score)}) to "{best.canonical_node.label}".'
        else:
            reason = build_match_reason(best)
        return CoverageItem(
            prompt_node_id=prompt_node.id,
            prompt_label=prompt_node.label,
            prompt_type=prompt_node.type,
            status=status,
            confidence=best.score,
            reason=reason,
            canonical_node_id=best.canonical_node.id,
            canonical_label=best.canonical_node.label,
        )


__all__ = ["AlignmentClassifier", "NO_CANDIDATES_REASON", "build_match_reason"]
