"""Replace stored prompt flow alignments for a (project, transcript set) scope."""
from __future__ import annotations

import logging
from typing import List, Sequence

from typing_extensions import Protocol

from backend.app.contracts import CoverageItem, PromptFlowAlignment

LOGGER = logging.getLogger(__name__)


class AlignmentStore(Protocol):
    """Write access to the alignment table."""

    async def replace_alignments(
        self,
        project_id: str,
        transcript_set_id: str,
        alignments: Sequence[PromptFlowAlignment],
    ) -> int:  # pragma: no cover - protocol
        ...


class AlignmentPersister:
    """Persist alignments whose confidence clears the floor threshold."""

    def __init__(self, store: AlignmentStore, floor_threshold: float) -> None:
        self._store = store
        self._floor_threshold = floor_threshold

    def rows_for(self, items: Sequence[CoverageItem]) -> List[PromptFlowAlignment]:
        """Return the alignment rows that qualify for persistence."""

        return [
            PromptFlowAlignment(
                prompt_node_id=item.prompt_node_id,
                canonical_node_id=item.canonical_node_id,
                score=item.confidence,
                reason=item.reason,
            )
            for item in items
            if item.canonical_node_id is not None and item.confidence >= self._floor_threshold
        ]

    async def persist(
        self,
        project_id: str,
        transcript_set_id: str,
        items: Sequence[CoverageItem],
        *,
        dry_run: bool = False,
    ) -> int:
        """Replace the scope's stored alignments with the qualifying items.

        Args:
            project_id: Project owning the prompt graph.
            transcript_set_id: Transcript set the prompt graph was aligned with.
            items: Collision-resolved coverage items.
            dry_run: When true, storage is left untouched and ``0`` is returned.

        Returns:
            int: Number of alignment rows written.

        Raises:
            StorageError: If the replace fails; previously stored rows are kept.
        """

        if dry_run:
            return 0
        rows = self.rows_for(items)
        persisted = await self._store.replace_alignments(project_id, transcript_set_id, rows)
        LOGGER.info(
            "Persisted %d prompt alignments for project %s and transcript set %s",
            persisted,
            project_id,
            transcript_set_id,
        )
        return persisted


__all__ = ["AlignmentPersister", "AlignmentStore"]
