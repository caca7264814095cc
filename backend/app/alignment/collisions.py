"""Soft one-to-one arbitration between prompt nodes competing for a canonical node."""
from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from backend.app.contracts import CoverageItem, CoverageStatus

LOGGER = logging.getLogger(__name__)


def resolve_collisions(items: Sequence[CoverageItem], collision_note: str) -> List[CoverageItem]:
    """Demote every non-winning prompt node that shares a canonical match.

    Non-uncovered items are grouped by canonical node id. Within a group of
    two or more, the highest confidence item keeps its status (earlier items
    win ties) and every other item becomes ``overconstrained`` with
    ``collision_note`` appended to its reason.

    Args:
        items: Classified items in prompt node order.
        collision_note: Text appended to the reason of demoted items.

    Returns:
        List[CoverageItem]: New items in the same order as ``items``.
    """

    groups: Dict[str, List[int]] = {}
    for index, item in enumerate(items):
        if item.canonical_node_id is None or item.status is CoverageStatus.UNCOVERED:
            continue
        groups.setdefault(item.canonical_node_id, []).append(index)

    resolved = list(items)
    for canonical_node_id, indices in groups.items():
        if len(indices) < 2:
            continue
        ranked = sorted(indices, key=lambda position: -items[position].confidence)
        for position in ranked[1:]:
            loser = items[position]
            resolved[position] = loser.model_copy(
                update={
                    "status": CoverageStatus.OVERCONSTRAINED,
                    "reason": f"{loser.reason} | {collision_note}",
                }
            )
        LOGGER.debug(
            "Canonical node %s claimed by %d prompt nodes; kept %s",
            canonical_node_id,
            len(indices),
            items[ranked[0]].prompt_node_id,
        )
    return resolved


__all__ = ["resolve_collisions"]
