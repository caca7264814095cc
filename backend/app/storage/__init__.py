"""Relational storage for transcripts, prompt nodes, canonical graphs and alignments."""

from backend.app.storage.database import create_session_factory, init_schema
from backend.app.storage.models import FlowBase
from backend.app.storage.repository import (
    AlignmentRepository,
    CanonicalFlowRepository,
    PromptNodeRepository,
    StorageError,
    TranscriptFlowArtifacts,
    TranscriptFlowRow,
    TranscriptRepository,
)

__all__ = [
    "AlignmentRepository",
    "CanonicalFlowRepository",
    "FlowBase",
    "PromptNodeRepository",
    "StorageError",
    "TranscriptFlowArtifacts",
    "TranscriptFlowRow",
    "TranscriptRepository",
    "create_session_factory",
    "init_schema",
]
