"""Immutable data contracts for the prompt flow alignment backend."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class _FrozenBaseModel(BaseModel):
    """Base model enforcing immutability after creation."""

    model_config = ConfigDict(frozen=True)


class CoverageStatus(str, Enum):
    """Classification of a prompt node against the canonical flow graph."""

    COVERED = "covered"
    UNCOVERED = "uncovered"
    OVERCONSTRAINED = "overconstrained"


class PromptNode(_FrozenBaseModel):
    """Authored prompt graph node, read-only for the alignment core."""

    id: str = Field(..., min_length=1)
    type: str = ""
    label: str = ""
    content: str = ""


class CanonicalFlowNode(_FrozenBaseModel):
    """Vote-aggregated conversational step shared by many transcript flows."""

    id: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    icon: str = Field(..., min_length=1)
    content: str = ""
    support_count: int = Field(0, ge=0)
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class CanonicalFlowEdge(_FrozenBaseModel):
    """Vote-aggregated transition between two canonical nodes."""

    from_node_id: str = Field(..., min_length=1)
    to_node_id: str = Field(..., min_length=1)
    reason: str = ""
    support_count: int = Field(0, ge=0)
    transition_rate: float = Field(0.0, ge=0.0, le=1.0)

    @field_validator("to_node_id")
    @classmethod
    def _reject_self_loop(cls, value: str, info: ValidationInfo) -> str:
        """Validate that the edge connects two distinct nodes.

        Args:
            value: The proposed destination node identifier.
            info: Validation context containing other field values.

        Returns:
            str: The validated destination identifier.

        Raises:
            ValueError: If the destination equals the source node.
        """
        if value == info.data.get("from_node_id"):
            raise ValueError("canonical edges cannot be self-loops")
        return value


class CanonicalFlowGraph(_FrozenBaseModel):
    """Canonical nodes and edges computed for one transcript set."""

    transcript_set_id: str = Field(..., min_length=1)
    nodes: List[CanonicalFlowNode] = Field(default_factory=list)
    edges: List[CanonicalFlowEdge] = Field(default_factory=list)
    flow_count: int = Field(0, ge=0)


class PromptFlowAlignment(_FrozenBaseModel):
    """Persisted alignment between a prompt node and a canonical node."""

    prompt_node_id: str = Field(..., min_length=1)
    canonical_node_id: str = Field(..., min_length=1)
    score: float = Field(..., ge=0.0, le=1.0)
    reason: str = ""


class CoverageItem(_FrozenBaseModel):
    """Coverage verdict for a single prompt node."""

    prompt_node_id: str = Field(..., min_length=1)
    prompt_label: str = ""
    prompt_type: str = ""
    status: CoverageStatus
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str = ""
    canonical_node_id: Optional[str] = None
    canonical_label: Optional[str] = None


class CoverageCounts(_FrozenBaseModel):
    """Number of prompt nodes per coverage status."""

    covered: int = Field(0, ge=0)
    uncovered: int = Field(0, ge=0)
    overconstrained: int = Field(0, ge=0)


class AlignmentReport(_FrozenBaseModel):
    """Result of one alignment run for a (project, transcript set) pair."""

    project_id: str = Field(..., min_length=1)
    transcript_set_id: str = Field(..., min_length=1)
    counts: CoverageCounts
    prompt_node_count: int = Field(0, ge=0)
    canonical_node_count: int = Field(0, ge=0)
    persisted_count: int = Field(0, ge=0)
    items: List[CoverageItem] = Field(default_factory=list)


class TranscriptSetSummary(_FrozenBaseModel):
    """Transcript set offered as an alignment target."""

    id: str = Field(..., min_length=1)
    name: str = ""
    project_id: Optional[str] = None
    created_at: datetime


__all__ = [
    "CoverageStatus",
    "PromptNode",
    "CanonicalFlowNode",
    "CanonicalFlowEdge",
    "CanonicalFlowGraph",
    "PromptFlowAlignment",
    "CoverageItem",
    "CoverageCounts",
    "AlignmentReport",
    "TranscriptSetSummary",
]
