"""Pydantic schemas for the alignment APIs."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field

from backend.app.contracts import CanonicalFlowEdge, CanonicalFlowNode, PromptFlowAlignment


class _FrozenModel(BaseModel):
    """Base immutable schema."""

    model_config = ConfigDict(frozen=True)


class AlignmentRunRequest(_FrozenModel):
    """Request payload for running an alignment."""

    project_id: str = Field(..., min_length=1)
    transcript_set_id: str = Field(..., min_length=1)
    persist: bool = True


class CanonicalGraphResponse(_FrozenModel):
    """Stored canonical graph of a transcript set."""

    transcript_set_id: str
    nodes: List[CanonicalFlowNode] = Field(default_factory=list)
    edges: List[CanonicalFlowEdge] = Field(default_factory=list)


class CanonicalClearResponse(_FrozenModel):
    """Outcome of clearing a cached canonical graph."""

    transcript_set_id: str
    removed_nodes: int = Field(0, ge=0)


class AlignmentListResponse(_FrozenModel):
    """Persisted alignments of a (project, transcript set) scope."""

    project_id: str
    transcript_set_id: str
    alignments: List[PromptFlowAlignment] = Field(default_factory=list)


__all__ = [
    "AlignmentListResponse",
    "AlignmentRunRequest",
    "CanonicalClearResponse",
    "CanonicalGraphResponse",
]
