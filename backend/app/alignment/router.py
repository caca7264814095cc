"""FastAPI router for prompt flow alignment endpoints."""
from __future__ import annotations

from typing import List, Optional, cast

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.alignment.schemas import (
    AlignmentListResponse,
    AlignmentRunRequest,
    CanonicalClearResponse,
    CanonicalGraphResponse,
)
from backend.app.config import APIConfig
from backend.app.contracts import AlignmentReport, TranscriptSetSummary
from backend.app.orchestration import AlignmentOrchestrator
from backend.app.storage import (
    AlignmentRepository,
    CanonicalFlowRepository,
    StorageError,
    TranscriptRepository,
)

router = APIRouter(prefix="/api/alignment", tags=["alignment"])


def _storage_unavailable(exc: StorageError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


def get_orchestrator(request: Request) -> AlignmentOrchestrator:
    """Return the alignment orchestrator stored on the app state."""

    return request.app.state.orchestrator


def get_api_config(request: Request) -> APIConfig:
    """Resolve the API configuration from the application state."""

    return request.app.state.app_config.api


def _session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return cast(async_sessionmaker[AsyncSession], request.app.state.session_factory)


def get_transcript_repository(request: Request) -> TranscriptRepository:
    """Construct a transcript repository over the app session factory."""

    return TranscriptRepository(_session_factory(request))


def get_canonical_repository(request: Request) -> CanonicalFlowRepository:
    """Construct a canonical graph repository over the app session factory."""

    return CanonicalFlowRepository(_session_factory(request))


def get_alignment_repository(request: Request) -> AlignmentRepository:
    """Construct an alignment repository over the app session factory."""

    return AlignmentRepository(_session_factory(request))


@router.post("/run", response_model=AlignmentReport)
async def run_alignment(
    payload: AlignmentRunRequest,
    orchestrator: AlignmentOrchestrator = Depends(get_orchestrator),
) -> AlignmentReport:
    """Align a project's prompt graph with a transcript set's canonical flow."""

    try:
        return await orchestrator.run_alignment(
            payload.project_id,
            payload.transcript_set_id,
            persist=payload.persist,
        )
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc


@router.get("/transcript-sets", response_model=List[TranscriptSetSummary])
async def list_transcript_sets(
    project_id: Optional[str] = Query(default=None),
    repository: TranscriptRepository = Depends(get_transcript_repository),
    api_config: APIConfig = Depends(get_api_config),
) -> List[TranscriptSetSummary]:
    """List transcript sets to align against, the project's own sets first."""

    try:
        return await repository.list_transcript_sets(
            project_id, limit=api_config.transcript_set_list_limit
        )
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc


@router.get("/{transcript_set_id}/canonical", response_model=CanonicalGraphResponse)
async def get_canonical_graph(
    transcript_set_id: str,
    repository: CanonicalFlowRepository = Depends(get_canonical_repository),
) -> CanonicalGraphResponse:
    """Return the stored canonical graph without rebuilding it."""

    try:
        nodes = await repository.list_nodes(transcript_set_id)
        edges = await repository.list_edges(transcript_set_id)
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc
    return CanonicalGraphResponse(transcript_set_id=transcript_set_id, nodes=nodes, edges=edges)


@router.delete("/{transcript_set_id}/canonical", response_model=CanonicalClearResponse)
async def clear_canonical_graph(
    transcript_set_id: str,
    orchestrator: AlignmentOrchestrator = Depends(get_orchestrator),
) -> CanonicalClearResponse:
    """Drop the cached canonical graph so the next run rebuilds it."""

    try:
        removed = await orchestrator.clear_canonical_graph(transcript_set_id)
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc
    return CanonicalClearResponse(transcript_set_id=transcript_set_id, removed_nodes=removed)


@router.get("/{transcript_set_id}/alignments", response_model=AlignmentListResponse)
async def list_alignments(
    transcript_set_id: str,
    project_id: str = Query(..., min_length=1),
    repository: AlignmentRepository = Depends(get_alignment_repository),
) -> AlignmentListResponse:
    """Return the persisted alignments of a (project, transcript set) scope."""

    try:
        alignments = await repository.list_alignments(project_id, transcript_set_id)
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc
    return AlignmentListResponse(
        project_id=project_id,
        transcript_set_id=transcript_set_id,
        alignments=alignments,
    )
