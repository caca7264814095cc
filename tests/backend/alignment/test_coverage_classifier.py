"""Tests for coverage classification, collision resolution and persistence."""
from __future__ import annotations

import asyncio
from typing import List, Sequence, Tuple

import pytest

from backend.app.alignment import (
    NO_CANDIDATES_REASON,
    AlignmentClassifier,
    AlignmentPersister,
    CandidateScore,
    resolve_collisions,
)
from backend.app.config import AlignmentConfig
from backend.app.contracts import (
    CanonicalFlowNode,
    CoverageItem,
    CoverageStatus,
    PromptFlowAlignment,
    PromptNode,
)

COLLISION_NOTE = "Multiple prompt sections map to the same canonical step."


@pytest.fixture(name="classifier")
def fixture_classifier() -> AlignmentClassifier:
    return AlignmentClassifier(
        AlignmentConfig(covered_threshold=0.58, floor_threshold=0.35, collision_note=COLLISION_NOTE)
    )


class _RecordingStore:
    def __init__(self) -> None:
        self.calls: List[Tuple[str, str, List[PromptFlowAlignment]]] = []

    async def replace_alignments(
        self,
        project_id: str,
        transcript_set_id: str,
        alignments: Sequence[PromptFlowAlignment],
    ) -> int:
        self.calls.append((project_id, transcript_set_id, list(alignments)))
        return len(alignments)


def _candidate(score: float, label: str = "Verify Caller Identity") -> CandidateScore:
    node = CanonicalFlowNode(
        id="canon_verify",
        label=label,
        type="task",
        icon="widgets",
        support_count=1,
        confidence=0.5,
    )
    return CandidateScore(
        canonical_node=node,
        score=score,
        token_score=2 / 3,
        label_score=2 / 3,
        type_score=1.0,
        support_score=0.25,
    )


def _item(
    prompt_id: str,
    confidence: float,
    status: CoverageStatus = CoverageStatus.COVERED,
    canonical_id: str = "canon_1",
) -> CoverageItem:
    return CoverageItem(
        prompt_node_id=prompt_id,
        prompt_label=prompt_id.title(),
        prompt_type="task",
        status=status,
        confidence=confidence,
        reason="matched",
        canonical_node_id=canonical_id,
        canonical_label="Step",
    )


def test_status_thresholds(classifier: AlignmentClassifier) -> None:
    assert classifier.status_for(0.58) is CoverageStatus.COVERED
    assert classifier.status_for(0.5799) is CoverageStatus.OVERCONSTRAINED
    assert classifier.status_for(0.35) is CoverageStatus.OVERCONSTRAINED
    assert classifier.status_for(0.3499) is CoverageStatus.UNCOVERED


def test_classify_without_candidates(classifier: AlignmentClassifier) -> None:
    item = classifier.classify(PromptNode(id="p1", type="task", label="Greet"), None)

    assert item.status is CoverageStatus.UNCOVERED
    assert item.confidence == 0.0
    assert item.reason == NO_CANDIDATES_REASON
    assert item.canonical_node_id is None


def test_classify_covered_match_explains_sub_scores(classifier: AlignmentClassifier) -> None:
    item = classifier.classify(PromptNode(id="p1", type="task", label="Verify Identity"), _candidate(0.7025))

    assert item.status is CoverageStatus.COVERED
    assert item.canonical_node_id == "canon_verify"
    assert item.canonical_label == "Verify Caller Identity"
    assert item.reason == (
        'Matched "Verify Caller Identity" | confidence 70% | token overlap 67% '
        "| label similarity 67% | type compatibility 100% | support 25%"
    )


def test_classify_weak_match(classifier: AlignmentClassifier) -> None:
    item = classifier.classify(PromptNode(id="p1", type="task", label="Refund"), _candidate(0.1898, "Greet Caller"))

    assert item.status is CoverageStatus.UNCOVERED
    assert item.reason == 'Weak match (19%) to "Greet Caller".'
    assert item.confidence == pytest.approx(0.1898)


def test_classify_middle_band_is_overconstrained(classifier: AlignmentClassifier) -> None:
    item = classifier.classify(PromptNode(id="p1", type="task", label="Check"), _candidate(0.4625))

    assert item.status is CoverageStatus.OVERCONSTRAINED
    assert item.reason.startswith('Matched "Verify Caller Identity" | confidence 46%')


def test_collisions_keep_the_strongest_claimant() -> None:
    items = [
        _item("weaker", 0.60),
        _item("stronger", 0.70),
        _item("unrelated", 0.65, canonical_id="canon_2"),
        _item("weak", 0.20, status=CoverageStatus.UNCOVERED),
    ]

    resolved = resolve_collisions(items, COLLISION_NOTE)

    assert [item.prompt_node_id for item in resolved] == ["weaker", "stronger", "unrelated", "weak"]
    assert resolved[0].status is CoverageStatus.OVERCONSTRAINED
    assert resolved[0].reason == f"matched | {COLLISION_NOTE}"
    assert resolved[0].confidence == 0.60
    assert resolved[1] == items[1]
    assert resolved[2] == items[2]
    assert resolved[3] == items[3]


def test_collision_ties_keep_the_earlier_item() -> None:
    items = [_item("first", 0.5, status=CoverageStatus.OVERCONSTRAINED), _item("second", 0.5)]

    resolved = resolve_collisions(items, COLLISION_NOTE)

    assert resolved[0] == items[0]
    assert resolved[1].status is CoverageStatus.OVERCONSTRAINED
    assert resolved[1].reason.endswith(COLLISION_NOTE)


def test_persister_writes_rows_above_floor() -> None:
    store = _RecordingStore()
    persister = AlignmentPersister(store, floor_threshold=0.35)
    items = [
        _item("covered", 0.9),
        _item("boundary", 0.35, status=CoverageStatus.OVERCONSTRAINED, canonical_id="canon_2"),
        _item("weak", 0.2, status=CoverageStatus.UNCOVERED),
        CoverageItem(
            prompt_node_id="empty",
            status=CoverageStatus.UNCOVERED,
            confidence=0.0,
            reason=NO_CANDIDATES_REASON,
        ),
    ]

    written = asyncio.run(persister.persist("project-1", "set-1", items))

    assert written == 2
    project_id, set_id, rows = store.calls[0]
    assert (project_id, set_id) == ("project-1", "set-1")
    assert [(row.prompt_node_id, row.canonical_node_id, row.score) for row in rows] == [
        ("covered", "canon_1", 0.9),
        ("boundary", "canon_2", 0.35),
    ]
    assert rows[0].reason == "matched"


def test_persister_replaces_with_empty_set() -> None:
    store = _RecordingStore()
    persister = AlignmentPersister(store, floor_threshold=0.35)

    written = asyncio.run(persister.persist("project-1", "set-1", [_item("weak", 0.1, CoverageStatus.UNCOVERED)]))

    assert written == 0
    assert store.calls == [("project-1", "set-1", [])]


def test_persister_dry_run_skips_storage() -> None:
    store = _RecordingStore()
    persister = AlignmentPersister(store, floor_threshold=0.35)

    written = asyncio.run(persister.persist("project-1", "set-1", [_item("covered", 0.9)], dry_run=True))

    assert written == 0
    assert store.calls == []
