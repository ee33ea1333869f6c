# -*- coding: utf-8 -*-
"""
Visibility Filter - TraceChain

Role-based disclosure of a resolved lineage tree. The root batch is always
shown; which ancestor nodes are disclosed depends on the viewer's approved
role, looked up in the single DISCLOSURE_POLICY table.

Nodes are classified by their producer's resolved role, not by tier index:
the tier at which Producer-made batches appear depends on who made the
root. A node whose producer role is unresolved only appears under FULL
disclosure.

The filter is a pure function of (tree, role); it never reads the ledger.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from tracechain.metrics import record_visibility_filter
from tracechain.models import (
    IdentitySnapshot,
    LineageNode,
    LineageTree,
    ParticipantRole,
)

logger = logging.getLogger(__name__)


class DisclosurePolicy(str, Enum):
    """How much of a lineage tree a viewer may see."""

    PRODUCER_ORIGIN_ONLY = "producer_origin_only"
    PROCESSOR_AND_PRODUCER = "processor_and_producer"
    FULL = "full"


#: Viewer role -> disclosure policy. ``None`` is a viewer with no approved role.
DISCLOSURE_POLICY: Dict[Optional[ParticipantRole], DisclosurePolicy] = {
    None: DisclosurePolicy.PRODUCER_ORIGIN_ONLY,
    ParticipantRole.PRODUCER: DisclosurePolicy.PRODUCER_ORIGIN_ONLY,
    ParticipantRole.PROCESSOR: DisclosurePolicy.PRODUCER_ORIGIN_ONLY,
    ParticipantRole.DISTRIBUTOR: DisclosurePolicy.PROCESSOR_AND_PRODUCER,
    ParticipantRole.CONSUMER: DisclosurePolicy.FULL,
}

_PROCESSOR_AND_PRODUCER: FrozenSet[ParticipantRole] = frozenset({
    ParticipantRole.PROCESSOR,
    ParticipantRole.PRODUCER,
})


def policy_for(
    viewer_role: Optional[ParticipantRole],
    is_administrator: bool = False,
) -> DisclosurePolicy:
    """Look up the disclosure policy for a viewer."""
    if is_administrator:
        return DisclosurePolicy.FULL
    return DISCLOSURE_POLICY[viewer_role]


def _is_producer(node: LineageNode) -> bool:
    return node.producer_role is ParticipantRole.PRODUCER


def _producer_origin_predicate(tree: LineageTree) -> Callable[[LineageNode], bool]:
    # Nearest tier holding any Producer-made node; nothing if neither does.
    for index, nodes in enumerate(tree.tiers):
        if any(_is_producer(node) for node in nodes):
            return lambda node, tier=index: node.tier == tier and _is_producer(node)
    return lambda node: False


def _predicate(
    tree: LineageTree,
    policy: DisclosurePolicy,
) -> Callable[[LineageNode], bool]:
    if policy is DisclosurePolicy.FULL:
        return lambda node: True
    if policy is DisclosurePolicy.PROCESSOR_AND_PRODUCER:
        return lambda node: node.producer_role in _PROCESSOR_AND_PRODUCER
    return _producer_origin_predicate(tree)


def _apply(tree: LineageTree, keep: Callable[[LineageNode], bool]) -> LineageTree:
    tier1: Tuple[LineageNode, ...] = tuple(n for n in tree.tier(1) if keep(n))
    tier0: Tuple[LineageNode, ...] = tuple(
        node.model_copy(
            update={"children": tuple(c for c in node.children if keep(c))}
        )
        for node in tree.tier(0)
        if keep(node)
    )
    return tree.model_copy(update={"tiers": (tier0, tier1)})


def visible_tiers(
    tree: LineageTree,
    viewer_role: Optional[ParticipantRole],
    is_administrator: bool = False,
) -> LineageTree:
    """Return the part of ``tree`` disclosed to a viewer.

    Args:
        tree: Fully resolved lineage tree.
        viewer_role: The viewer's approved role, or None.
        is_administrator: Administrators see the entire tree.

    Returns:
        A new LineageTree with the same root and only disclosed nodes.
        Tier-0 nodes dropped by the policy take none of their children
        with them; children stay reachable through tier 1.
    """
    policy = policy_for(viewer_role, is_administrator)
    record_visibility_filter(policy.value)

    if policy is DisclosurePolicy.FULL:
        return tree

    filtered = _apply(tree, _predicate(tree, policy))
    logger.debug(
        "Visibility %s on batch %d: %d of %d nodes disclosed",
        policy.value, tree.root_batch_id,
        len(filtered.nodes()), len(tree.nodes()),
    )
    return filtered


def visible_for(tree: LineageTree, snapshot: IdentitySnapshot) -> LineageTree:
    """Filter ``tree`` using a viewer's identity snapshot."""
    return visible_tiers(tree, snapshot.active_role, snapshot.is_admin)


__all__ = [
    "DISCLOSURE_POLICY",
    "DisclosurePolicy",
    "policy_for",
    "visible_tiers",
    "visible_for",
]
