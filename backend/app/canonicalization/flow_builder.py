"""Fold per-transcript flow graphs into one canonical flow graph by frequency voting."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from typing_extensions import Protocol

from backend.app.config import CanonicalizationConfig
from backend.app.contracts import CanonicalFlowEdge, CanonicalFlowGraph, CanonicalFlowNode

from .fingerprint import canonical_node_id
from .text import clamp01, normalize_label, read_text

LOGGER = logging.getLogger(__name__)


class FlowRowLike(Protocol):
    """Stored flow graph as returned by the flow graph store."""

    id: str
    nodes: Any
    connections: Any


class TranscriptFlowSource(Protocol):
    """Read access to the transcript catalog and flow graph store."""

    async def list_transcript_ids(self, transcript_set_id: str) -> Sequence[str]:  # pragma: no cover - protocol
        ...

    async def list_flow_rows(self, transcript_ids: Sequence[str]) -> Sequence[FlowRowLike]:  # pragma: no cover - protocol
        ...


class CanonicalGraphStore(Protocol):
    """Read/replace access to stored canonical graphs."""

    async def list_nodes(self, transcript_set_id: str) -> List[CanonicalFlowNode]:  # pragma: no cover - protocol
        ...

    async def replace_graph(
        self,
        transcript_set_id: str,
        nodes: Sequence[CanonicalFlowNode],
        edges: Sequence[CanonicalFlowEdge],
        *,
        meta: Optional[Mapping[str, Any]] = None,
    ) -> None:  # pragma: no cover - protocol
        ...

    async def clear(self, transcript_set_id: str) -> int:  # pragma: no cover - protocol
        ...


@dataclass(frozen=True, slots=True)
class FlowNode:
    """Flow node parsed from an untrusted payload."""

    id: str
    label: str
    type: str
    icon: str
    content: str


@dataclass(frozen=True, slots=True)
class FlowConnection:
    """Flow connection parsed from an untrusted payload."""

    source: str
    target: str
    reason: str


def parse_flow_nodes(raw: Any, *, default_type: str = "custom", default_icon: str = "widgets") -> List[FlowNode]:
    """Parse untrusted flow node payloads, skipping unusable entries.

    Args:
        raw: Value stored for the flow's nodes; anything but a list yields no nodes.
        default_type: Type applied when an entry has none.
        default_icon: Icon applied when an entry has none.

    Returns:
        List[FlowNode]: Nodes with a non-empty id and normalized label.
    """

    if not isinstance(raw, list):
        return []
    nodes: List[FlowNode] = []
    for value in raw:
        if not isinstance(value, Mapping):
            continue
        node_id = read_text(value.get("id"))
        label = normalize_label(read_text(value.get("label")))
        if not node_id or not label:
            LOGGER.debug("Skipping flow node without id or label: %r", value)
            continue
        nodes.append(
            FlowNode(
                id=node_id,
                label=label,
                type=read_text(value.get("type")) or default_type,
                icon=read_text(value.get("icon")) or default_icon,
                content=read_text(value.get("content")) or label,
            )
        )
    return nodes


def parse_flow_connections(raw: Any) -> List[FlowConnection]:
    """Parse untrusted flow connection payloads, skipping entries without endpoints."""

    if not isinstance(raw, list):
        return []
    connections: List[FlowConnection] = []
    for value in raw:
        if not isinstance(value, Mapping):
            continue
        source = read_text(value.get("from"))
        target = read_text(value.get("to"))
        if not source or not target:
            LOGGER.debug("Skipping flow connection without endpoints: %r", value)
            continue
        connections.append(FlowConnection(source=source, target=target, reason=read_text(value.get("reason"))))
    return connections


def _top_vote(votes: Counter[str]) -> str:
    # most_common keeps first-seen order among equal counts
    if not votes:
        return ""
    return votes.most_common(1)[0][0]


def _bump_vote(votes: Counter[str], value: str) -> None:
    if value:
        votes[value] += 1


@dataclass(slots=True)
class _NodeBucket:
    """Internal mutable structure storing votes for one canonical node."""

    id: str
    type: str
    icon: str
    label_votes: Counter[str] = field(default_factory=Counter)
    content_votes: Counter[str] = field(default_factory=Counter)
    support_flows: Set[str] = field(default_factory=set)

    def add(self, node: FlowNode, flow_id: str, default_icon: str) -> None:
        """Record one flow's vote for this canonical node."""

        self.type = self.type or node.type
        self.icon = self.icon or node.icon or default_icon
        _bump_vote(self.label_votes, normalize_label(node.label))
        _bump_vote(self.content_votes, node.content.strip() or normalize_label(node.label))
        self.support_flows.add(flow_id)

    def to_node(self, total_flows: int, config: CanonicalizationConfig) -> CanonicalFlowNode:
        """Convert the vote record into a :class:`CanonicalFlowNode`."""

        support = len(self.support_flows)
        return CanonicalFlowNode(
            id=self.id,
            label=_top_vote(self.label_votes) or config.fallback_label,
            type=self.type or config.default_type,
            icon=self.icon or config.default_icon,
            content=_top_vote(self.content_votes),
            support_count=support,
            confidence=clamp01(support / total_flows),
        )


@dataclass(slots=True)
class _EdgeBucket:
    """Internal mutable structure storing votes for one canonical transition."""

    from_node_id: str
    to_node_id: str
    support_count: int = 0
    reason_votes: Counter[str] = field(default_factory=Counter)

    def add(self, reason: str) -> None:
        self.support_count += 1
        _bump_vote(self.reason_votes, reason.strip())

    def to_edge(self, total_flows: int) -> CanonicalFlowEdge:
        return CanonicalFlowEdge(
            from_node_id=self.from_node_id,
            to_node_id=self.to_node_id,
            reason=_top_vote(self.reason_votes),
            support_count=self.support_count,
            transition_rate=clamp01(self.support_count / total_flows),
        )


class CanonicalFlowAggregator:
    """Accumulate transcript flows into canonical node and edge votes."""

    def __init__(self, config: Optional[CanonicalizationConfig] = None) -> None:
        self._config = config or CanonicalizationConfig()
        self._node_buckets: Dict[str, _NodeBucket] = {}
        self._edge_buckets: Dict[Tuple[str, str], _EdgeBucket] = {}
        self._flow_count = 0

    @property
    def flow_count(self) -> int:
        """Return the number of flows ingested so far."""

        return self._flow_count

    def ingest(self, flow_id: str, raw_nodes: Any, raw_connections: Any) -> None:
        """Ingest one flow graph and update the vote buckets.

        Local node ids are resolved to canonical ids only within this flow.
        Connections whose endpoints were skipped or that collapse onto a single
        canonical node are ignored.
        """

        self._flow_count += 1
        local_to_canonical: Dict[str, str] = {}
        for node in parse_flow_nodes(
            raw_nodes,
            default_type=self._config.default_type,
            default_icon=self._config.default_icon,
        ):
            canonical_id = canonical_node_id(node.type, node.label)
            local_to_canonical[node.id] = canonical_id
            bucket = self._node_buckets.get(canonical_id)
            if bucket is None:
                bucket = _NodeBucket(
                    id=canonical_id,
                    type=node.type,
                    icon=node.icon or self._config.default_icon,
                )
                self._node_buckets[canonical_id] = bucket
            bucket.add(node, flow_id, self._config.default_icon)

        for connection in parse_flow_connections(raw_connections):
            from_id = local_to_canonical.get(connection.source)
            to_id = local_to_canonical.get(connection.target)
            if not from_id or not to_id:
                LOGGER.debug(
                    "Dropping connection %s -> %s in flow %s: unresolved endpoint",
                    connection.source,
                    connection.target,
                    flow_id,
                )
                continue
            if from_id == to_id:
                continue
            key = (from_id, to_id)
            edge_bucket = self._edge_buckets.get(key)
            if edge_bucket is None:
                edge_bucket = _EdgeBucket(from_node_id=from_id, to_node_id=to_id)
                self._edge_buckets[key] = edge_bucket
            edge_bucket.add(connection.reason)

    def extend(self, flows: Iterable[FlowRowLike]) -> None:
        """Ingest a collection of stored flow rows."""

        for flow in flows:
            self.ingest(flow.id, flow.nodes, flow.connections)

    def build(self) -> Tuple[List[CanonicalFlowNode], List[CanonicalFlowEdge]]:
        """Finalize votes into canonical nodes and edges in first-seen order."""

        total_flows = max(1, self._flow_count)
        nodes = [bucket.to_node(total_flows, self._config) for bucket in self._node_buckets.values()]
        edges = [bucket.to_edge(total_flows) for bucket in self._edge_buckets.values()]
        return nodes, edges


class CanonicalFlowBuilder:
    """Build and cache the canonical flow graph of a transcript set."""

    def __init__(
        self,
        transcripts: TranscriptFlowSource,
        store: CanonicalGraphStore,
        *,
        config: Optional[CanonicalizationConfig] = None,
    ) -> None:
        self._transcripts = transcripts
        self._store = store
        self._config = config or CanonicalizationConfig()

    async def rebuild(self, transcript_set_id: str) -> CanonicalFlowGraph:
        """Recompute the canonical graph from scratch and replace the stored one.

        Args:
            transcript_set_id: Transcript set to canonicalize.

        Returns:
            CanonicalFlowGraph: The freshly computed nodes and edges.

        Raises:
            StorageError: If loading flows or replacing the graph fails.
        """

        transcript_ids = await self._transcripts.list_transcript_ids(transcript_set_id)
        if not transcript_ids:
            LOGGER.info("Transcript set %s has no transcripts; canonical flow is empty", transcript_set_id)
            return CanonicalFlowGraph(transcript_set_id=transcript_set_id)

        flow_rows = await self._transcripts.list_flow_rows(transcript_ids)
        aggregator = CanonicalFlowAggregator(self._config)
        aggregator.extend(flow_rows)
        nodes, edges = aggregator.build()

        await self._store.replace_graph(
            transcript_set_id,
            nodes,
            edges,
            meta={"generatedBy": self._config.generated_by},
        )
        LOGGER.info(
            "Rebuilt canonical flow for transcript set %s (flows=%d, nodes=%d, edges=%d)",
            transcript_set_id,
            aggregator.flow_count,
            len(nodes),
            len(edges),
        )
        return CanonicalFlowGraph(
            transcript_set_id=transcript_set_id,
            nodes=nodes,
            edges=edges,
            flow_count=aggregator.flow_count,
        )

    async def ensure_canonical_nodes(self, transcript_set_id: str) -> List[CanonicalFlowNode]:
        """Return stored canonical nodes, building the graph only when none exist.

        Existing graphs are never refreshed here; newly ingested transcripts
        only take effect after the stored graph is cleared.
        """

        existing = await self._store.list_nodes(transcript_set_id)
        if existing:
            return existing
        rebuilt = await self.rebuild(transcript_set_id)
        if not rebuilt.nodes:
            return []
        return await self._store.list_nodes(transcript_set_id)

    async def clear(self, transcript_set_id: str) -> int:
        """Drop the cached canonical graph so the next ensure call rebuilds it."""

        removed = await self._store.clear(transcript_set_id)
        LOGGER.info("Cleared %d canonical nodes for transcript set %s", removed, transcript_set_id)
        return removed


__all__ = [
    "CanonicalFlowAggregator",
    "CanonicalFlowBuilder",
    "CanonicalGraphStore",
    "FlowConnection",
    "FlowNode",
    "FlowRowLike",
    "TranscriptFlowSource",
    "parse_flow_connections",
    "parse_flow_nodes",
]
