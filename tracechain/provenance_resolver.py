# -*- coding: utf-8 -*-
"""
Provenance Resolver - TraceChain

Rebuilds the production lineage of a batch from independent ledger fact
streams: composition declarations (batch inputs), identity records
(participants), and custody changes (transfer records).

Resolution expands exactly two tiers below the queried batch:
    tier 0: the root's declared inputs; acquisition time is correlated
            against the root's producer.
    tier 1: each tier-0 node's declared inputs; acquisition time is
            correlated against that tier-0 node's producer.
Tier-1 inputs are never expanded.

Partial-failure tolerance:
    - Only a failure fetching the root batch is fatal to the call.
    - Any other failed read degrades the single affected node, which keeps
      its batch id and quantity and records the failed step as a
      DegradationReason. Composition of the tree always succeeds.
    - A node acquired before its declared creation is flagged, not
      corrected.

Nodes within a tier keep declaration order. Sibling enrichment may run
concurrently; results are composed in order and the tree is only
published once complete.

Example:
    >>> resolver = ProvenanceResolver(ledger)
    >>> tree = await resolver.resolve_lineage(10)
    >>> [n.batch_id for n in tree.tier(0)]
    [7]
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from tracechain.config import LINEAGE_DEPTH, get_config
from tracechain.exceptions import TraceChainException
from tracechain.ledger import LedgerQueryInterface
from tracechain.metrics import (
    record_degraded_node,
    record_lineage_resolution,
    record_time_ordering_violation,
)
from tracechain.models import (
    Batch,
    BatchInput,
    DegradationReason,
    LineageNode,
    LineageRoot,
    LineageTree,
    NodeStatus,
    ParticipantRole,
    validate_batch_id,
)
from tracechain.temporal_correlator import TemporalCorrelator
from tracechain.tx_index import SubgraphTxIndex

logger = logging.getLogger(__name__)


@dataclass
class _NodeDraft:
    """Mutable accumulator for one node; frozen into a LineageNode at the end."""

    declaration: BatchInput
    tier: int
    consumed_by: int
    batch: Optional[Batch] = None
    producer_organization: Optional[str] = None
    producer_role: Optional[ParticipantRole] = None
    acquired_at: Optional[int] = None
    reasons: List[DegradationReason] = field(default_factory=list)
    parent_index: Optional[int] = None

    def degrade(self, reason: DegradationReason, exc: BaseException) -> None:
        self.reasons.append(reason)
        record_degraded_node(reason.value)
        logger.warning(
            "Degraded lineage node %d (tier %d, consumed by %d): %s: %s",
            self.declaration.batch_id, self.tier, self.consumed_by,
            reason.value, exc,
        )

    @property
    def time_ordering_violation(self) -> bool:
        return (
            self.batch is not None
            and self.acquired_at is not None
            and self.acquired_at < self.batch.created_at
        )

    def build(self, children: Sequence[LineageNode] = ()) -> LineageNode:
        batch = self.batch
        return LineageNode(
            batch_id=self.declaration.batch_id,
            quantity=self.declaration.quantity,
            tier=self.tier,
            consumed_by=self.consumed_by,
            name=batch.name if batch is not None else None,
            producer=batch.producer if batch is not None else None,
            producer_organization=self.producer_organization,
            producer_role=self.producer_role,
            created_at=batch.created_at if batch is not None else None,
            acquired_at=self.acquired_at,
            metadata=batch.metadata if batch is not None else None,
            children=tuple(children),
            status=NodeStatus.DEGRADED if self.reasons else NodeStatus.RESOLVED,
            degradation_reasons=tuple(self.reasons),
            time_ordering_violation=self.time_ordering_violation,
        )


class ProvenanceResolver:
    """Two-tier lineage builder over a LedgerQueryInterface.

    No state is shared between calls; duplicate ancestors reached through
    different paths are fetched and enriched independently.

    Attributes:
        _ledger: Ledger read facade.
        _correlator: TemporalCorrelator bound to the same ledger.
        _tx_index: Optional historical transaction index for the root.
        _concurrent: Enrich siblings within a tier concurrently.
    """

    def __init__(
        self,
        ledger: LedgerQueryInterface,
        config: Optional[Any] = None,
        tx_index: Optional[SubgraphTxIndex] = None,
    ) -> None:
        self._config = config or get_config()
        self._ledger = ledger
        self._correlator = TemporalCorrelator(ledger)
        self._tx_index = tx_index
        self._concurrent = bool(
            getattr(self._config, "enrich_concurrently", True)
        )
        logger.info(
            "ProvenanceResolver initialized (concurrent=%s, tx_index=%s)",
            self._concurrent, tx_index is not None,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve_lineage(self, batch_id: int) -> LineageTree:
        """Reconstruct the two-tier lineage of ``batch_id``.

        Args:
            batch_id: Positive id of the queried batch.

        Returns:
            A freshly built, immutable LineageTree.

        Raises:
            InvalidInputError: If batch_id is not a positive integer.
            BatchNotFound: If the root batch does not exist.
            TransientLedgerError: If the root batch could not be read.
        """
        validate_batch_id(batch_id)
        start_time = time.monotonic()

        try:
            root_batch = await self._ledger.get_batch(batch_id)
        except TraceChainException:
            record_lineage_resolution("error", time.monotonic() - start_time)
            raise

        root = await self._build_root(root_batch)

        tier0 = await self._enrich_all([
            (decl, root_batch, None) for decl in root_batch.inputs
        ], tier=0)

        tier1_jobs: List[Tuple[BatchInput, Batch, Optional[int]]] = []
        for index, draft in enumerate(tier0):
            if draft.batch is not None:
                tier1_jobs.extend(
                    (decl, draft.batch, index) for decl in draft.batch.inputs
                )
        tier1 = await self._enrich_all(tier1_jobs, tier=1)

        children: Dict[int, List[LineageNode]] = {}
        tier1_nodes: List[LineageNode] = []
        for draft in tier1:
            node = draft.build()
            tier1_nodes.append(node)
            children.setdefault(draft.parent_index, []).append(node)

        tier0_nodes = [
            draft.build(children.get(index, ()))
            for index, draft in enumerate(tier0)
        ]

        tree = LineageTree(
            root=root,
            tiers=(tuple(tier0_nodes), tuple(tier1_nodes)),
        )

        for node in tree.time_ordering_violations():
            record_time_ordering_violation()
            logger.warning(
                "Batch %d acquired at %s before creation at %s",
                node.batch_id, node.acquired_at, node.created_at,
            )

        elapsed = time.monotonic() - start_time
        record_lineage_resolution("success", elapsed)
        logger.info(
            "Resolved %d-tier lineage of batch %d: tier0=%d tier1=%d "
            "degraded=%d (%.1f ms)",
            LINEAGE_DEPTH, batch_id, len(tier0_nodes), len(tier1_nodes),
            len(tree.degraded_nodes()), elapsed * 1000,
        )
        return tree

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _build_root(self, batch: Batch) -> LineageRoot:
        organization: Optional[str] = None
        role: Optional[ParticipantRole] = None
        try:
            participant = await self._ledger.get_participant(batch.producer)
            organization = participant.organization
            role = participant.role
        except TraceChainException as exc:
            logger.warning(
                "Root producer %s of batch %d unresolved: %s",
                batch.producer, batch.batch_id, exc,
            )

        tx_hash: Optional[str] = None
        if self._tx_index is not None:
            tx_hash = await self._tx_index.tx_hash_for_batch(batch.batch_id)

        return LineageRoot(
            batch_id=batch.batch_id,
            name=batch.name,
            producer=batch.producer,
            producer_organization=organization,
            producer_role=role,
            created_at=batch.created_at,
            metadata=batch.metadata,
            tx_hash=tx_hash,
        )

    async def _enrich_all(
        self,
        jobs: Sequence[Tuple[BatchInput, Batch, Optional[int]]],
        tier: int,
    ) -> List[_NodeDraft]:
        """Enrich every (declaration, consumer) pair, preserving order."""
        factories: List[Callable[[], Awaitable[_NodeDraft]]] = [
            (lambda d=decl, c=consumer, p=parent: self._enrich(d, c, tier, p))
            for decl, consumer, parent in jobs
        ]
        if self._concurrent:
            return list(await asyncio.gather(*(f() for f in factories)))
        return [await f() for f in factories]

    async def _enrich(
        self,
        declaration: BatchInput,
        consumer: Batch,
        tier: int,
        parent_index: Optional[int] = None,
    ) -> _NodeDraft:
        """Fetch and enrich one declared input of ``consumer``."""
        draft = _NodeDraft(
            declaration=declaration,
            tier=tier,
            consumed_by=consumer.batch_id,
            parent_index=parent_index,
        )

        try:
            draft.batch = await self._ledger.get_batch(declaration.batch_id)
        except TraceChainException as exc:
            draft.degrade(DegradationReason.BATCH_UNAVAILABLE, exc)
            return draft

        try:
            participant = await self._ledger.get_participant(draft.batch.producer)
            draft.producer_organization = participant.organization
            draft.producer_role = participant.role
        except TraceChainException as exc:
            draft.degrade(DegradationReason.PARTICIPANT_UNAVAILABLE, exc)

        try:
            draft.acquired_at = await self._correlator.latest_accepted_transfer_time(
                declaration.batch_id, consumer.producer,
            )
        except TraceChainException as exc:
            draft.degrade(DegradationReason.ACQUISITION_UNAVAILABLE, exc)

        return draft


__all__ = ["ProvenanceResolver"]
