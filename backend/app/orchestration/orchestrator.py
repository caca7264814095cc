"""End-to-end orchestration of a prompt flow alignment run."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing_extensions import Protocol

from backend.app.alignment import (
    AlignmentClassifier,
    AlignmentPersister,
    AlignmentStore,
    NodeSimilarityScorer,
    resolve_collisions,
)
from backend.app.canonicalization import (
    CanonicalFlowBuilder,
    CanonicalGraphStore,
    TranscriptFlowSource,
)
from backend.app.config import AppConfig
from backend.app.contracts import (
    AlignmentReport,
    CoverageCounts,
    CoverageItem,
    CoverageStatus,
    PromptNode,
)
from backend.app.storage import (
    AlignmentRepository,
    CanonicalFlowRepository,
    PromptNodeRepository,
    TranscriptRepository,
)

from .locks import KeyedLockRegistry, alignment_lock_key, canonical_lock_key

LOGGER = logging.getLogger(__name__)

_STATUS_RANK = {
    CoverageStatus.UNCOVERED: 0,
    CoverageStatus.OVERCONSTRAINED: 1,
    CoverageStatus.COVERED: 2,
}


class PromptNodeSource(Protocol):
    """Read access to a project's prompt graph."""

    async def list_prompt_nodes(self, project_id: str) -> Sequence[PromptNode]:  # pragma: no cover - protocol
        ...


def _report_order(item: CoverageItem) -> Tuple[int, float, str, str]:
    # covered items rank by confidence, the other tiers by label
    if item.status is CoverageStatus.COVERED:
        return (_STATUS_RANK[item.status], -item.confidence, "", "")
    return (_STATUS_RANK[item.status], 0.0, item.prompt_label.casefold(), item.prompt_label)


def sort_report_items(items: Sequence[CoverageItem]) -> List[CoverageItem]:
    """Order items uncovered first, then overconstrained, then covered.

    Uncovered and overconstrained items are ordered by prompt label, compared
    case-insensitively first. Covered items are ordered by descending
    confidence. Ties keep their input order.
    """

    return sorted(items, key=_report_order)


def count_statuses(items: Sequence[CoverageItem]) -> CoverageCounts:
    """Count items per coverage status."""

    covered = sum(1 for item in items if item.status is CoverageStatus.COVERED)
    overconstrained = sum(1 for item in items if item.status is CoverageStatus.OVERCONSTRAINED)
    return CoverageCounts(
        covered=covered,
        uncovered=len(items) - covered - overconstrained,
        overconstrained=overconstrained,
    )


class AlignmentOrchestrator:
    """Coordinate canonicalization, scoring, classification and persistence."""

    def __init__(
        self,
        *,
        config: AppConfig,
        prompt_nodes: PromptNodeSource,
        builder: CanonicalFlowBuilder,
        scorer: NodeSimilarityScorer,
        classifier: AlignmentClassifier,
        persister: AlignmentPersister,
        locks: Optional[KeyedLockRegistry] = None,
    ) -> None:
        self._config = config
        self._prompt_nodes = prompt_nodes
        self._builder = builder
        self._scorer = scorer
        self._classifier = classifier
        self._persister = persister
        self._locks = locks or KeyedLockRegistry()

    @classmethod
    def from_stores(
        cls,
        config: AppConfig,
        *,
        transcripts: TranscriptFlowSource,
        prompt_nodes: PromptNodeSource,
        canonical_store: CanonicalGraphStore,
        alignment_store: AlignmentStore,
        locks: Optional[KeyedLockRegistry] = None,
    ) -> "AlignmentOrchestrator":
        """Wire the pipeline components from configuration and storage collaborators."""

        classifier = AlignmentClassifier(config.alignment)
        return cls(
            config=config,
            prompt_nodes=prompt_nodes,
            builder=CanonicalFlowBuilder(transcripts, canonical_store, config=config.canonicalization),
            scorer=NodeSimilarityScorer(config.scoring, config.text.stop_word_set()),
            classifier=classifier,
            persister=AlignmentPersister(alignment_store, classifier.floor_threshold),
            locks=locks,
        )

    async def run_alignment(
        self,
        project_id: str,
        transcript_set_id: str,
        *,
        persist: bool = True,
    ) -> AlignmentReport:
        """Align a project's prompt graph with the canonical flow of a transcript set.

        The canonical lock of the transcript set is taken before the alignment
        lock of the (project, transcript set) pair, so concurrent runs never
        interleave their replace operations.

        Args:
            project_id: Project whose prompt nodes are classified.
            transcript_set_id: Transcript set providing the observed flows.
            persist: When false, nothing is written to the alignment table.

        Returns:
            AlignmentReport: Counts and sorted coverage items.

        Raises:
            StorageError: If any storage read or write fails.
        """

        async with self._locks.hold(canonical_lock_key(transcript_set_id)):
            async with self._locks.hold(alignment_lock_key(project_id, transcript_set_id)):
                return await self._run_locked(project_id, transcript_set_id, persist=persist)

    async def _run_locked(self, project_id: str, transcript_set_id: str, *, persist: bool) -> AlignmentReport:
        prompt_nodes = list(await self._prompt_nodes.list_prompt_nodes(project_id))
        canonical_nodes = await self._builder.ensure_canonical_nodes(transcript_set_id)

        classified = [
            self._classifier.classify(prompt_node, self._scorer.select_best(prompt_node, canonical_nodes))
            for prompt_node in prompt_nodes
        ]
        resolved = resolve_collisions(classified, self._config.alignment.collision_note)
        persisted = await self._persister.persist(
            project_id,
            transcript_set_id,
            resolved,
            dry_run=not persist,
        )
        counts = count_statuses(resolved)
        LOGGER.info(
            "Aligned project %s with transcript set %s: covered=%d uncovered=%d overconstrained=%d persisted=%d",
            project_id,
            transcript_set_id,
            counts.covered,
            counts.uncovered,
            counts.overconstrained,
            persisted,
        )
        return AlignmentReport(
            project_id=project_id,
            transcript_set_id=transcript_set_id,
            counts=counts,
            prompt_node_count=len(prompt_nodes),
            canonical_node_count=len(canonical_nodes),
            persisted_count=persisted,
            items=sort_report_items(resolved),
        )

    async def clear_canonical_graph(self, transcript_set_id: str) -> int:
        """Drop the stored canonical graph so the next run rebuilds it."""

        async with self._locks.hold(canonical_lock_key(transcript_set_id)):
            return await self._builder.clear(transcript_set_id)


def build_orchestrator(
    config: AppConfig,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    locks: Optional[KeyedLockRegistry] = None,
) -> AlignmentOrchestrator:
    """Create an orchestrator backed by the SQLAlchemy repositories."""

    return AlignmentOrchestrator.from_stores(
        config,
        transcripts=TranscriptRepository(session_factory),
        prompt_nodes=PromptNodeRepository(session_factory),
        canonical_store=CanonicalFlowRepository(session_factory),
        alignment_store=AlignmentRepository(session_factory),
        locks=locks,
    )


__all__ = [
    "AlignmentOrchestrator",
    "PromptNodeSource",
    "build_orchestrator",
    "count_statuses",
    "sort_report_items",
]
