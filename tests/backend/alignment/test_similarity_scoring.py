"""Tests for prompt node to canonical node similarity scoring."""
from __future__ import annotations

import pytest

from backend.app.alignment import NodeSimilarityScorer
from backend.app.config import load_config
from backend.app.contracts import CanonicalFlowNode, PromptNode


@pytest.fixture(name="scorer")
def fixture_scorer() -> NodeSimilarityScorer:
    config = load_config()
    return NodeSimilarityScorer(config.scoring, config.text.stop_word_set())


def _canonical(
    label: str,
    node_type: str = "task",
    content: str = "",
    support: int = 1,
    node_id: str = "canon_1",
) -> CanonicalFlowNode:
    return CanonicalFlowNode(
        id=node_id,
        label=label,
        type=node_type,
        icon="widgets",
        content=content or label,
        support_count=support,
        confidence=1.0,
    )


def test_label_similarity(scorer: NodeSimilarityScorer) -> None:
    assert scorer.label_similarity("Verify_Identity", "Verify Identity") == 1.0
    assert scorer.label_similarity("Verify", "Verify Identity") == 0.7
    assert scorer.label_similarity("Verify Identity", "Verify Caller Identity") == pytest.approx(2 / 3)
    assert scorer.label_similarity("Greet", "Close Call") == 0.0
    assert scorer.label_similarity("", "Close Call") == 0.0


def test_type_compatibility_uses_families(scorer: NodeSimilarityScorer) -> None:
    assert scorer.type_compatibility("task", "task") == 1.0
    assert scorer.type_compatibility("core_persona", "mission objective") == 0.65
    assert scorer.type_compatibility("vector-db", "memory buffer") == 0.65
    assert scorer.type_compatibility("webhook", "termination") == 0.15
    assert scorer.type_family("logic_branch") == "flow-control"
    assert scorer.type_family("unknown kind") == "custom"


def test_type_family_lookup_is_case_sensitive(scorer: NodeSimilarityScorer) -> None:
    assert scorer.type_family("Webhook") == "custom"
    assert scorer.type_compatibility("Webhook", "webhook") == 0.15
    assert scorer.type_compatibility("Webhook", "Webhook") == 1.0


def test_scoring_keeps_no_per_prompt_state(scorer: NodeSimilarityScorer) -> None:
    before = dict(vars(scorer))
    candidates = [_canonical("Greet Caller", content="Greet the caller warmly")]

    for run in range(50):
        prompt = PromptNode(id=f"p{run}", type="task", label="Greet Caller", content=f"draft {run}")
        assert scorer.select_best(prompt, candidates) is not None

    assert dict(vars(scorer)) == before


def test_support_score_saturates(scorer: NodeSimilarityScorer) -> None:
    assert scorer.support_score(0) == 0.0
    assert scorer.support_score(1) == pytest.approx(0.25)
    assert scorer.support_score(15) == pytest.approx(1.0)
    assert scorer.support_score(1000) == 1.0


def test_partial_label_match_with_same_type_is_strong(scorer: NodeSimilarityScorer) -> None:
    prompt = PromptNode(id="p1", type="task", label="Verify Identity")
    candidate = scorer.score(prompt, _canonical("Verify Caller Identity"))

    assert candidate.token_score == pytest.approx(2 / 3)
    assert candidate.label_score == pytest.approx(2 / 3)
    assert candidate.type_score == 1.0
    assert candidate.support_score == pytest.approx(0.25)
    assert candidate.score == pytest.approx(0.7025)


def test_scores_stay_in_unit_interval(scorer: NodeSimilarityScorer) -> None:
    prompt = PromptNode(id="p1", type="task", label="Greet Caller", content="Greet the caller")
    exact = scorer.score(prompt, _canonical("Greet Caller", content="Greet the caller", support=10_000))
    unrelated = scorer.score(
        PromptNode(id="p2", type="webhook", label="Refund"),
        _canonical("Greet Caller", node_type="termination", support=0),
    )

    assert exact.score == pytest.approx(1.0)
    assert exact.score <= 1.0
    assert unrelated.score == pytest.approx(0.15 * 0.17)


def test_select_best_prefers_highest_score_and_first_on_ties(scorer: NodeSimilarityScorer) -> None:
    prompt = PromptNode(id="p1", type="task", label="Greet Caller")
    first = _canonical("Greet Caller", node_id="canon_a")
    twin = _canonical("Greet Caller", node_id="canon_b")
    weaker = _canonical("Close Call", node_id="canon_c")

    best = scorer.select_best(prompt, [weaker, first, twin])

    assert best is not None
    assert best.canonical_node.id == "canon_a"
    assert scorer.select_best(prompt, []) is None
