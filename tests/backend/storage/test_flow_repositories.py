"""Tests for the SQLAlchemy repositories backing the alignment pipeline."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.config import StorageConfig
from backend.app.contracts import CanonicalFlowEdge, CanonicalFlowNode, PromptFlowAlignment, PromptNode
from backend.app.storage import (
    AlignmentRepository,
    CanonicalFlowRepository,
    PromptNodeRepository,
    StorageError,
    TranscriptRepository,
    create_session_factory,
    init_schema,
)


@asynccontextmanager
async def _database(with_schema: bool = True) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine, session_factory = create_session_factory(StorageConfig(database_url="sqlite+aiosqlite:///:memory:"))
    try:
        if with_schema:
            await init_schema(engine)
        yield session_factory
    finally:
        await engine.dispose()


def _canonical(node_id: str, label: str) -> CanonicalFlowNode:
    return CanonicalFlowNode(
        id=node_id,
        label=label,
        type="task",
        icon="widgets",
        content=label,
        support_count=1,
        confidence=0.5,
    )


def test_transcript_flow_ingestion_creates_named_set() -> None:
    async def _run() -> None:
        async with _database() as session_factory:
            repository = TranscriptRepository(session_factory)

            artifacts = await repository.add_transcript_flow(
                transcript_text="Agent: hello",
                nodes=[{"id": "a", "label": "Greet"}],
                connections=[],
                project_name=" Acme ",
                project_id="project-1",
            )
            await repository.add_transcript_flow(
                transcript_text="Agent: bye",
                nodes="not-a-list",
                connections=None,
                transcript_set_id=artifacts.transcript_set_id,
            )

            transcript_ids = await repository.list_transcript_ids(artifacts.transcript_set_id)
            rows = await repository.list_flow_rows(transcript_ids)
            sets = await repository.list_transcript_sets("project-1")

        assert len(transcript_ids) == 2
        assert artifacts.transcript_id in transcript_ids
        assert {row.transcript_id for row in rows} == set(transcript_ids)
        assert [{"id": "a", "label": "Greet"}] in [row.nodes for row in rows]
        assert "not-a-list" in [row.nodes for row in rows]
        assert [summary.name for summary in sets] == ["Acme Transcript Set"]
        assert sets[0].project_id == "project-1"

    asyncio.run(_run())


def test_unnamed_ingestion_uses_generic_set_name() -> None:
    async def _run() -> None:
        async with _database() as session_factory:
            repository = TranscriptRepository(session_factory)
            await repository.add_transcript_flow(transcript_text="hi", nodes=[], connections=[])
            sets = await repository.list_transcript_sets(None)

        assert [summary.name for summary in sets] == ["Transcript Set"]

    asyncio.run(_run())


def test_transcript_sets_list_project_sets_first() -> None:
    async def _run() -> None:
        async with _database() as session_factory:
            repository = TranscriptRepository(session_factory)
            other = await repository.create_transcript_set("Other", project_id="project-2")
            linked = await repository.create_transcript_set("Linked", project_id="project-1")
            newest = await repository.create_transcript_set("Newest")

            listed = await repository.list_transcript_sets("project-1")
            limited = await repository.list_transcript_sets("project-1", limit=1)

        assert [summary.id for summary in listed] == [linked, newest, other]
        assert [summary.id for summary in limited] == [newest]

    asyncio.run(_run())


def test_prompt_nodes_keep_authored_order_and_normalize_labels() -> None:
    async def _run() -> None:
        async with _database() as session_factory:
            repository = PromptNodeRepository(session_factory)
            await repository.add_prompt_nodes(
                "project-1",
                [
                    PromptNode(id="p-b", type="task", label="Verify__Identity"),
                    PromptNode(id="p-a", type="task", label="Greet Caller"),
                ],
            )
            await repository.add_prompt_nodes("project-1", [PromptNode(id="p-c", type="termination", label="Close")])
            await repository.add_prompt_nodes("project-2", [PromptNode(id="p-z", type="task", label="Other")])

            nodes = await repository.list_prompt_nodes("project-1")

        assert [node.id for node in nodes] == ["p-b", "p-a", "p-c"]
        assert nodes[0].label == "Verify Identity"

    asyncio.run(_run())


def test_replace_graph_swaps_nodes_and_edges() -> None:
    async def _run() -> None:
        async with _database() as session_factory:
            repository = CanonicalFlowRepository(session_factory)
            await repository.replace_graph(
                "set-1",
                [_canonical("canon_b", "Greet"), _canonical("canon_a", "Close")],
                [CanonicalFlowEdge(from_node_id="canon_b", to_node_id="canon_a", support_count=1, transition_rate=1.0)],
                meta={"generatedBy": "prompt-flow-alignment"},
            )
            await repository.replace_graph("set-2", [_canonical("canon_b", "Greet")], [])
            await repository.replace_graph("set-1", [_canonical("canon_c", "Verify")], [])

            set_one = await repository.list_nodes("set-1")
            set_two = await repository.list_nodes("set-2")
            edges = await repository.list_edges("set-1")

        assert [node.id for node in set_one] == ["canon_c"]
        assert [node.id for node in set_two] == ["canon_b"]
        assert edges == []

    asyncio.run(_run())


def test_list_nodes_preserves_build_order() -> None:
    async def _run() -> None:
        async with _database() as session_factory:
            repository = CanonicalFlowRepository(session_factory)
            await repository.replace_graph(
                "set-1",
                [_canonical("canon_z", "Greet"), _canonical("canon_a", "Close"), _canonical("canon_m", "Verify")],
                [],
            )
            nodes = await repository.list_nodes("set-1")

        assert [node.id for node in nodes] == ["canon_z", "canon_a", "canon_m"]

    asyncio.run(_run())


def test_failed_replace_keeps_previous_graph() -> None:
    async def _run() -> None:
        async with _database() as session_factory:
            repository = CanonicalFlowRepository(session_factory)
            edge = CanonicalFlowEdge(from_node_id="canon_a", to_node_id="canon_b", support_count=1, transition_rate=1.0)
            await repository.replace_graph("set-1", [_canonical("canon_a", "Greet"), _canonical("canon_b", "Close")], [edge])

            with pytest.raises(StorageError) as excinfo:
                await repository.replace_graph("set-1", [_canonical("canon_c", "Verify")], [edge, edge])

            nodes = await repository.list_nodes("set-1")
            edges = await repository.list_edges("set-1")

        assert str(excinfo.value).startswith("Failed to store canonical flow graph: ")
        assert [node.id for node in nodes] == ["canon_a", "canon_b"]
        assert edges == [edge]

    asyncio.run(_run())


def test_clear_removes_only_the_target_set() -> None:
    async def _run() -> None:
        async with _database() as session_factory:
            repository = CanonicalFlowRepository(session_factory)
            await repository.replace_graph("set-1", [_canonical("canon_a", "Greet"), _canonical("canon_b", "Close")], [])
            await repository.replace_graph("set-2", [_canonical("canon_a", "Greet")], [])

            removed = await repository.clear("set-1")
            remaining = await repository.list_nodes("set-2")
            cleared = await repository.list_nodes("set-1")

        assert removed == 2
        assert cleared == []
        assert len(remaining) == 1

    asyncio.run(_run())


def test_replace_alignments_is_scoped_to_project_and_set() -> None:
    async def _run() -> None:
        async with _database() as session_factory:
            repository = AlignmentRepository(session_factory)
            first = PromptFlowAlignment(prompt_node_id="p1", canonical_node_id="canon_a", score=0.9, reason="matched")
            second = PromptFlowAlignment(prompt_node_id="p2", canonical_node_id="canon_b", score=0.4, reason="partial")

            await repository.replace_alignments("project-1", "set-1", [first, second])
            await repository.replace_alignments("project-2", "set-1", [first])
            written = await repository.replace_alignments("project-1", "set-1", [second])

            scoped = await repository.list_alignments("project-1", "set-1")
            untouched = await repository.list_alignments("project-2", "set-1")

        assert written == 1
        assert scoped == [second]
        assert untouched == [first]

    asyncio.run(_run())


def test_storage_failures_carry_operation_context() -> None:
    async def _run() -> None:
        async with _database(with_schema=False) as session_factory:
            repository = PromptNodeRepository(session_factory)
            with pytest.raises(StorageError) as excinfo:
                await repository.list_prompt_nodes("project-1")

        assert str(excinfo.value).startswith("Failed to load prompt nodes: ")
        assert excinfo.value.__cause__ is not None

    asyncio.run(_run())
