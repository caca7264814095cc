"""SQLAlchemy ORM models for transcript, prompt and alignment tables."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class FlowBase(DeclarativeBase):
    """Base declarative class for flow alignment models."""


class TranscriptSetRecord(FlowBase):
    """Named collection of transcripts canonicalized together."""

    __tablename__ = "transcript_sets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")
    source: Mapped[str] = mapped_column(String(64), default="manual")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    transcripts: Mapped[List["TranscriptRecord"]] = relationship(
        back_populates="transcript_set", cascade="all, delete-orphan"
    )


class TranscriptRecord(FlowBase):
    """Raw conversation transcript belonging to a transcript set."""

    __tablename__ = "transcripts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    transcript_set_id: Mapped[str] = mapped_column(
        ForeignKey("transcript_sets.id", ondelete="CASCADE"), index=True
    )
    external_id: Mapped[str] = mapped_column(String(255), default="")
    title: Mapped[str] = mapped_column(String(255), default="")
    transcript_text: Mapped[str] = mapped_column(Text)
    metadata_payload: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    transcript_set: Mapped[TranscriptSetRecord] = relationship(back_populates="transcripts")
    flows: Mapped[List["TranscriptFlowRecord"]] = relationship(
        back_populates="transcript", cascade="all, delete-orphan"
    )


class TranscriptFlowRecord(FlowBase):
    """Flow graph extracted from one transcript, stored as untrusted JSON."""

    __tablename__ = "transcript_flows"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    transcript_id: Mapped[str] = mapped_column(
        ForeignKey("transcripts.id", ondelete="CASCADE"), index=True
    )
    model: Mapped[str] = mapped_column(String(128), default="")
    flow_title: Mapped[str] = mapped_column(String(255), default="Transcript Flow")
    flow_summary: Mapped[str] = mapped_column(Text, default="")
    nodes_json: Mapped[Any] = mapped_column(JSON, default=list)
    connections_json: Mapped[Any] = mapped_column(JSON, default=list)
    used_fallback: Mapped[bool] = mapped_column(Boolean, default=False)
    warning: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    transcript: Mapped[TranscriptRecord] = relationship(back_populates="flows")


class PromptNodeRecord(FlowBase):
    """Node of an authored prompt graph."""

    __tablename__ = "prompt_nodes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(String(64), index=True)
    type: Mapped[str] = mapped_column(String(64), default="custom")
    label: Mapped[str] = mapped_column(String(255), default="")
    content: Mapped[str] = mapped_column(Text, default="")
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class CanonicalFlowNodeRecord(FlowBase):
    """Canonical node row; ``position`` preserves build order for stable scoring."""

    __tablename__ = "canonical_flow_nodes"

    transcript_set_id: Mapped[str] = mapped_column(
        ForeignKey("transcript_sets.id", ondelete="CASCADE"), primary_key=True
    )
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    label: Mapped[str] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(64), default="custom")
    icon: Mapped[str] = mapped_column(String(64), default="widgets")
    content: Mapped[str] = mapped_column(Text, default="")
    meta: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    support_count: Mapped[int] = mapped_column(Integer, default=0)
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class CanonicalFlowEdgeRecord(FlowBase):
    """Canonical transition row between two canonical nodes of the same set."""

    __tablename__ = "canonical_flow_edges"
    __table_args__ = (
        UniqueConstraint("transcript_set_id", "from_node_id", "to_node_id", name="uq_canonical_edge"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transcript_set_id: Mapped[str] = mapped_column(
        ForeignKey("transcript_sets.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    from_node_id: Mapped[str] = mapped_column(String(64))
    to_node_id: Mapped[str] = mapped_column(String(64))
    reason: Mapped[str] = mapped_column(Text, default="")
    support_count: Mapped[int] = mapped_column(Integer, default=0)
    transition_rate: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class PromptFlowAlignmentRecord(FlowBase):
    """Persisted alignment of a prompt node onto a canonical node."""

    __tablename__ = "prompt_flow_alignments"
    __table_args__ = (
        UniqueConstraint(
            "project_id",
            "transcript_set_id",
            "prompt_node_id",
            "canonical_node_id",
            name="uq_prompt_flow_alignment",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(64), index=True)
    transcript_set_id: Mapped[str] = mapped_column(
        ForeignKey("transcript_sets.id", ondelete="CASCADE"), index=True
    )
    prompt_node_id: Mapped[str] = mapped_column(String(64), index=True)
    canonical_node_id: Mapped[str] = mapped_column(String(64), index=True)
    alignment_score: Mapped[float] = mapped_column(Float, default=0.0)
    alignment_reason: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


__all__ = [
    "FlowBase",
    "TranscriptSetRecord",
    "TranscriptRecord",
    "TranscriptFlowRecord",
    "PromptNodeRecord",
    "CanonicalFlowNodeRecord",
    "CanonicalFlowEdgeRecord",
    "PromptFlowAlignmentRecord",
]
