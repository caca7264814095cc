"""Canonicalization package folding transcript flows into a canonical flow graph."""

from .fingerprint import canonical_id_from_key, canonical_node_id, fingerprint_key, fnv1a_32
from .flow_builder import (
    CanonicalFlowAggregator,
    CanonicalFlowBuilder,
    CanonicalGraphStore,
    FlowConnection,
    FlowNode,
    FlowRowLike,
    TranscriptFlowSource,
    parse_flow_connections,
    parse_flow_nodes,
)
from .text import normalize_label, tokenize

__all__ = [
    "CanonicalFlowAggregator",
    "CanonicalFlowBuilder",
    "CanonicalGraphStore",
    "FlowConnection",
    "FlowNode",
    "FlowRowLike",
    "TranscriptFlowSource",
    "canonical_id_from_key",
    "canonical_node_id",
    "fingerprint_key",
    "fnv1a_32",
    "normalize_label",
    "parse_flow_connections",
    "parse_flow_nodes",
    "tokenize",
]
