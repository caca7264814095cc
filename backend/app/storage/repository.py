"""Async repositories over the transcript, prompt, canonical and alignment tables."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.canonicalization.text import normalize_label
from backend.app.contracts import (
    CanonicalFlowEdge,
    CanonicalFlowNode,
    PromptFlowAlignment,
    PromptNode,
    TranscriptSetSummary,
)
from backend.app.storage.models import (
    CanonicalFlowEdgeRecord,
    CanonicalFlowNodeRecord,
    PromptFlowAlignmentRecord,
    PromptNodeRecord,
    TranscriptFlowRecord,
    TranscriptRecord,
    TranscriptSetRecord,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class StorageError(RuntimeError):
    """Raised when a storage read or write fails."""


@dataclass(frozen=True)
class TranscriptFlowRow:
    """Untrusted flow graph payload loaded for canonicalization."""

    id: str
    transcript_id: str
    nodes: Any
    connections: Any


@dataclass(frozen=True)
class TranscriptFlowArtifacts:
    """Identifiers created when a transcript and its flow are ingested."""

    transcript_set_id: str
    transcript_id: str
    transcript_flow_id: str


class _SessionScopedRepository:
    """Run each repository operation in its own session and transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _read(self, context: str, operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            async with self._session_factory() as session:
                return await operation(session)
        except SQLAlchemyError as exc:
            LOGGER.error("%s: %s", context, exc)
            raise StorageError(f"{context}: {exc}") from exc

    async def _write(self, context: str, operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Execute ``operation`` atomically; any failure rolls the whole unit back."""

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await operation(session)
        except SQLAlchemyError as exc:
            LOGGER.error("%s: %s", context, exc)
            raise StorageError(f"{context}: {exc}") from exc


class TranscriptRepository(_SessionScopedRepository):
    """Transcript catalog and flow graph store."""

    async def list_transcript_ids(self, transcript_set_id: str) -> List[str]:
        """Return ids of transcripts belonging to a transcript set in ingestion order."""

        async def _operation(session: AsyncSession) -> List[str]:
            result = await session.execute(
                select(TranscriptRecord.id)
                .where(TranscriptRecord.transcript_set_id == transcript_set_id)
                .order_by(TranscriptRecord.created_at, TranscriptRecord.id)
            )
            return list(result.scalars().all())

        return await self._read("Failed to load transcripts for canonical flow", _operation)

    async def list_flow_rows(self, transcript_ids: Sequence[str]) -> List[TranscriptFlowRow]:
        """Return the raw flow graphs stored for the given transcripts."""

        if not transcript_ids:
            return []

        async def _operation(session: AsyncSession) -> List[TranscriptFlowRow]:
            result = await session.execute(
                select(TranscriptFlowRecord)
                .where(TranscriptFlowRecord.transcript_id.in_(list(transcript_ids)))
                .order_by(TranscriptFlowRecord.created_at, TranscriptFlowRecord.id)
            )
            return [
                TranscriptFlowRow(
                    id=record.id,
                    transcript_id=record.transcript_id,
                    nodes=record.nodes_json,
                    connections=record.connections_json,
                )
                for record in result.scalars().all()
            ]

        return await self._read("Failed to load transcript flows for canonical flow", _operation)

    async def list_transcript_sets(
        self, project_id: Optional[str], *, limit: int = 100
    ) -> List[TranscriptSetSummary]:
        """Return recent transcript sets, those linked to ``project_id`` first."""

        async def _operation(session: AsyncSession) -> List[TranscriptSetSummary]:
            result = await session.execute(
                select(TranscriptSetRecord)
                .order_by(TranscriptSetRecord.created_at.desc(), TranscriptSetRecord.id)
                .limit(limit)
            )
            return [
                TranscriptSetSummary(
                    id=record.id,
                    name=record.name,
                    project_id=record.project_id,
                    created_at=record.created_at,
                )
                for record in result.scalars().all()
            ]

        summaries = await self._read("Failed to load transcript sets", _operation)
        summaries.sort(key=lambda item: 0 if project_id is not None and item.project_id == project_id else 1)
        return summaries

    async def create_transcript_set(
        self,
        name: str,
        *,
        project_id: Optional[str] = None,
        description: str = "",
        source: str = "manual",
    ) -> str:
        """Create an empty transcript set and return its identifier."""

        async def _operation(session: AsyncSession) -> str:
            record = TranscriptSetRecord(
                name=name,
                project_id=project_id,
                description=description,
                source=source,
            )
            session.add(record)
            await session.flush()
            return record.id

        return await self._write("Failed to create transcript set", _operation)

    async def add_transcript_flow(
        self,
        *,
        transcript_text: str,
        nodes: Any,
        connections: Any,
        project_name: str = "",
        project_id: Optional[str] = None,
        transcript_set_id: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        model: str = "",
        flow_title: str = "Transcript Flow",
        flow_summary: str = "",
        used_fallback: bool = False,
        warning: str = "",
    ) -> TranscriptFlowArtifacts:
        """Store a transcript and the flow graph extracted from it.

        A transcript set is created when ``transcript_set_id`` is omitted. The
        set, transcript and flow rows are written in a single transaction.

        Args:
            transcript_text: Raw transcript body.
            nodes: Flow node payload as produced by the extractor.
            connections: Flow connection payload as produced by the extractor.
            project_name: Display name used for generated set and transcript titles.
            project_id: Optional project the new transcript set is linked to.
            transcript_set_id: Existing transcript set to append to.
            metadata: Free-form transcript metadata.
            model: Extractor model identifier.
            flow_title: Title reported by the extractor.
            flow_summary: Summary reported by the extractor.
            used_fallback: Whether the extractor fell back to a deterministic flow.
            warning: Extractor warning text.

        Returns:
            TranscriptFlowArtifacts: Identifiers of the stored rows.

        Raises:
            StorageError: If any row cannot be written.
        """

        normalized_name = project_name.strip()

        async def _operation(session: AsyncSession) -> TranscriptFlowArtifacts:
            set_id = transcript_set_id
            if not set_id:
                transcript_set = TranscriptSetRecord(
                    project_id=project_id,
                    name=f"{normalized_name} Transcript Set" if normalized_name else "Transcript Set",
                    description="Transcript artifacts generated from import flow mapping.",
                    source="transcript-import",
                )
                session.add(transcript_set)
                await session.flush()
                set_id = transcript_set.id
            timestamp = datetime.now(timezone.utc).isoformat()
            transcript = TranscriptRecord(
                transcript_set_id=set_id,
                title=f"{normalized_name or 'Transcript'} @ {timestamp}",
                transcript_text=transcript_text,
                metadata_payload=dict(metadata or {}),
            )
            session.add(transcript)
            await session.flush()
            flow = TranscriptFlowRecord(
                transcript_id=transcript.id,
                model=model,
                flow_title=flow_title,
                flow_summary=flow_summary,
                nodes_json=nodes,
                connections_json=connections,
                used_fallback=used_fallback,
                warning=warning,
            )
            session.add(flow)
            await session.flush()
            return TranscriptFlowArtifacts(
                transcript_set_id=set_id,
                transcript_id=transcript.id,
                transcript_flow_id=flow.id,
            )

        return await self._write("Failed to persist transcript flow artifacts", _operation)


class PromptNodeRepository(_SessionScopedRepository):
    """Prompt graph node store."""

    async def list_prompt_nodes(self, project_id: str) -> List[PromptNode]:
        """Return the project's prompt nodes in authored order with normalized labels."""

        async def _operation(session: AsyncSession) -> List[PromptNode]:
            result = await session.execute(
                select(PromptNodeRecord)
                .where(PromptNodeRecord.project_id == project_id)
                .order_by(PromptNodeRecord.sort_order, PromptNodeRecord.id)
            )
            return [
                PromptNode(
                    id=record.id,
                    type=record.type or "",
                    label=normalize_label(record.label or ""),
                    content=record.content or "",
                )
                for record in result.scalars().all()
            ]

        return await self._read("Failed to load prompt nodes", _operation)

    async def add_prompt_nodes(self, project_id: str, nodes: Sequence[PromptNode]) -> int:
        """Append prompt nodes to a project after its existing nodes."""

        async def _operation(session: AsyncSession) -> int:
            result = await session.execute(
                select(func.max(PromptNodeRecord.sort_order)).where(
                    PromptNodeRecord.project_id == project_id
                )
            )
            current = result.scalar_one_or_none()
            next_order = 0 if current is None else current + 1
            session.add_all(
                [
                    PromptNodeRecord(
                        id=node.id,
                        project_id=project_id,
                        type=node.type,
                        label=node.label,
                        content=node.content,
                        sort_order=next_order + offset,
                    )
                    for offset, node in enumerate(nodes)
                ]
            )
            return len(nodes)

        return await self._write("Failed to store prompt nodes", _operation)


class CanonicalFlowRepository(_SessionScopedRepository):
    """Canonical node and edge store scoped by transcript set."""

    async def list_nodes(self, transcript_set_id: str) -> List[CanonicalFlowNode]:
        """Return canonical nodes in the order they were built."""

        async def _operation(session: AsyncSession) -> List[CanonicalFlowNode]:
            result = await session.execute(
                select(CanonicalFlowNodeRecord)
                .where(CanonicalFlowNodeRecord.transcript_set_id == transcript_set_id)
                .order_by(CanonicalFlowNodeRecord.position, CanonicalFlowNodeRecord.id)
            )
            return [
                CanonicalFlowNode(
                    id=record.id,
                    label=normalize_label(record.label) or record.label,
                    type=record.type,
                    icon=record.icon,
                    content=record.content or "",
                    support_count=max(0, record.support_count or 0),
                    confidence=record.confidence,
                )
                for record in result.scalars().all()
            ]

        return await self._read("Failed to load canonical flow nodes", _operation)

    async def list_edges(self, transcript_set_id: str) -> List[CanonicalFlowEdge]:
        """Return canonical edges in the order they were built."""

        async def _operation(session: AsyncSession) -> List[CanonicalFlowEdge]:
            result = await session.execute(
                select(CanonicalFlowEdgeRecord)
                .where(CanonicalFlowEdgeRecord.transcript_set_id == transcript_set_id)
                .order_by(CanonicalFlowEdgeRecord.position, CanonicalFlowEdgeRecord.id)
            )
            return [
                CanonicalFlowEdge(
                    from_node_id=record.from_node_id,
                    to_node_id=record.to_node_id,
                    reason=record.reason or "",
                    support_count=max(0, record.support_count or 0),
                    transition_rate=record.transition_rate,
                )
                for record in result.scalars().all()
            ]

        return await self._read("Failed to load canonical flow edges", _operation)

    async def replace_graph(
        self,
        transcript_set_id: str,
        nodes: Sequence[CanonicalFlowNode],
        edges: Sequence[CanonicalFlowEdge],
        *,
        meta: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Atomically swap the stored canonical graph of a transcript set.

        Existing nodes and edges are deleted and the new ones inserted inside
        one transaction, so a failure leaves the previous graph in place.
        """

        node_meta: Dict[str, Any] = dict(meta or {})

        async def _operation(session: AsyncSession) -> None:
            await session.execute(
                delete(CanonicalFlowEdgeRecord).where(
                    CanonicalFlowEdgeRecord.transcript_set_id == transcript_set_id
                )
            )
            await session.execute(
                delete(CanonicalFlowNodeRecord).where(
                    CanonicalFlowNodeRecord.transcript_set_id == transcript_set_id
                )
            )
            if nodes:
                session.add_all(
                    [
                        CanonicalFlowNodeRecord(
                            transcript_set_id=transcript_set_id,
                            id=node.id,
                            position=position,
                            label=node.label,
                            type=node.type,
                            icon=node.icon,
                            content=node.content,
                            meta=dict(node_meta),
                            support_count=node.support_count,
                            confidence=node.confidence,
                        )
                        for position, node in enumerate(nodes)
                    ]
                )
            if edges:
                session.add_all(
                    [
                        CanonicalFlowEdgeRecord(
                            transcript_set_id=transcript_set_id,
                            position=position,
                            from_node_id=edge.from_node_id,
                            to_node_id=edge.to_node_id,
                            reason=edge.reason,
                            support_count=edge.support_count,
                            transition_rate=edge.transition_rate,
                        )
                        for position, edge in enumerate(edges)
                    ]
                )

        await self._write("Failed to store canonical flow graph", _operation)

    async def clear(self, transcript_set_id: str) -> int:
        """Delete the canonical graph of a transcript set, returning removed node count."""

        async def _operation(session: AsyncSession) -> int:
            await session.execute(
                delete(CanonicalFlowEdgeRecord).where(
                    CanonicalFlowEdgeRecord.transcript_set_id == transcript_set_id
                )
            )
            result = await session.execute(
                delete(CanonicalFlowNodeRecord).where(
                    CanonicalFlowNodeRecord.transcript_set_id == transcript_set_id
                )
            )
            return int(result.rowcount or 0)

        return await self._write("Failed to clear canonical flow nodes", _operation)


class AlignmentRepository(_SessionScopedRepository):
    """Prompt flow alignment store scoped by (project, transcript set)."""

    async def replace_alignments(
        self,
        project_id: str,
        transcript_set_id: str,
        alignments: Sequence[PromptFlowAlignment],
    ) -> int:
        """Atomically replace the alignment rows of a (project, transcript set) scope."""

        async def _operation(session: AsyncSession) -> int:
            await session.execute(
                delete(PromptFlowAlignmentRecord).where(
                    PromptFlowAlignmentRecord.project_id == project_id,
                    PromptFlowAlignmentRecord.transcript_set_id == transcript_set_id,
                )
            )
            if not alignments:
                return 0
            session.add_all(
                [
                    PromptFlowAlignmentRecord(
                        project_id=project_id,
                        transcript_set_id=transcript_set_id,
                        prompt_node_id=alignment.prompt_node_id,
                        canonical_node_id=alignment.canonical_node_id,
                        alignment_score=alignment.score,
                        alignment_reason=alignment.reason,
                    )
                    for alignment in alignments
                ]
            )
            return len(alignments)

        return await self._write("Failed to persist prompt alignments", _operation)

    async def list_alignments(self, project_id: str, transcript_set_id: str) -> List[PromptFlowAlignment]:
        """Return persisted alignments for review."""

        async def _operation(session: AsyncSession) -> List[PromptFlowAlignment]:
            result = await session.execute(
                select(PromptFlowAlignmentRecord)
                .where(
                    PromptFlowAlignmentRecord.project_id == project_id,
                    PromptFlowAlignmentRecord.transcript_set_id == transcript_set_id,
                )
                .order_by(PromptFlowAlignmentRecord.id)
            )
            return [
                PromptFlowAlignment(
                    prompt_node_id=record.prompt_node_id,
                    canonical_node_id=record.canonical_node_id,
                    score=record.alignment_score,
                    reason=record.alignment_reason,
                )
                for record in result.scalars().all()
            ]

        return await self._read("Failed to load prompt alignments", _operation)


__all__ = [
    "StorageError",
    "TranscriptFlowRow",
    "TranscriptFlowArtifacts",
    "TranscriptRepository",
    "PromptNodeRepository",
    "CanonicalFlowRepository",
    "AlignmentRepository",
]
