# -*- coding: utf-8 -*-
"""
TraceChain Data Models

Pydantic v2 data models for the TraceChain provenance engine. Defines the
ledger-side records read through the Ledger Query Interface, the lineage
tree produced by the Provenance Resolver, and the identity snapshot
produced by the Identity & Authorization Snapshot resolver.

Models:
    - Enumerations: ParticipantRole, ApprovalStatus, TransferStatus,
        NodeStatus, DegradationReason, TriggerSource
    - Ledger records: BatchInput, Batch, Participant, TransferRecord,
        RegistrationRequestEvent
    - Lineage: LineageRoot, LineageNode, LineageTree
    - Identity: IdentitySnapshot

Ledger records are immutable once read. Lineage and identity results are
rebuilt wholesale on every request and never patched in place.
"""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from tracechain.exceptions import InconsistentTimeOrdering, InvalidInputError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

#: Feature keys that carry identity data and are never shown as metadata.
HIDDEN_METADATA_KEYS = frozenset({
    "company", "contact", "role", "firstName", "lastName",
})


def normalize_address(address: str) -> str:
    """Validate an address and return its lowercase form.

    Raises:
        InvalidInputError: If the address is not ``0x`` + 40 hex chars.
    """
    if not isinstance(address, str) or not _ADDRESS_RE.match(address):
        raise InvalidInputError(
            f"Malformed address: {address!r}",
            context={"address": address},
        )
    return address.lower()


def validate_batch_id(batch_id: int) -> int:
    """Reject anything other than a positive integer batch id."""
    if isinstance(batch_id, bool) or not isinstance(batch_id, int) or batch_id <= 0:
        raise InvalidInputError(
            f"Batch id must be a positive integer, got {batch_id!r}",
            context={"batch_id": batch_id},
        )
    return batch_id


def parse_feature_metadata(features: str) -> Optional[Dict[str, Any]]:
    """Decode a batch's feature string into visible metadata.

    Returns None when the string is empty, not JSON, or not a JSON object.
    Identity keys in HIDDEN_METADATA_KEYS are stripped.
    """
    if not features:
        return None
    try:
        decoded = json.loads(features)
    except ValueError:
        return None
    if not isinstance(decoded, dict):
        return None
    return {k: v for k, v in decoded.items() if k not in HIDDEN_METADATA_KEYS}


# =============================================================================
# Enumerations
# =============================================================================


class ParticipantRole(str, Enum):
    """The four participant roles recognised by the ledger."""

    PRODUCER = "Producer"
    PROCESSOR = "Processor"
    DISTRIBUTOR = "Distributor"
    CONSUMER = "Consumer"

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["ParticipantRole"]:
        """Parse an on-ledger role string; empty means no role."""
        if not raw:
            return None
        try:
            return cls(raw)
        except ValueError:
            raise InvalidInputError(
                f"Unknown participant role: {raw!r}",
                context={"role": raw},
            )


class ApprovalStatus(str, Enum):
    """Registration approval status of a participant."""

    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELED = "Canceled"

    @classmethod
    def from_code(cls, code: int) -> "ApprovalStatus":
        """Map the ledger's numeric status code (0-3) to a status."""
        try:
            return _APPROVAL_CODES[int(code)]
        except (KeyError, TypeError, ValueError):
            raise InvalidInputError(
                f"Unknown approval status code: {code!r}",
                context={"code": code},
            )


_APPROVAL_CODES = {
    0: ApprovalStatus.PENDING,
    1: ApprovalStatus.APPROVED,
    2: ApprovalStatus.REJECTED,
    3: ApprovalStatus.CANCELED,
}


class TransferStatus(str, Enum):
    """Lifecycle status of a custody transfer.

    Transitions exactly once from PENDING to one terminal value.
    """

    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"

    @classmethod
    def from_code(cls, code: int) -> "TransferStatus":
        """Map the ledger's numeric transfer status (0-3) to a status."""
        try:
            return _TRANSFER_CODES[int(code)]
        except (KeyError, TypeError, ValueError):
            raise InvalidInputError(
                f"Unknown transfer status code: {code!r}",
                context={"code": code},
            )


_TRANSFER_CODES = {
    0: TransferStatus.PENDING,
    1: TransferStatus.ACCEPTED,
    2: TransferStatus.REJECTED,
    3: TransferStatus.CANCELLED,
}


class NodeStatus(str, Enum):
    """Whether a lineage node was fully enriched."""

    RESOLVED = "resolved"
    DEGRADED = "degraded"


class DegradationReason(str, Enum):
    """Which enrichment step failed for a degraded lineage node."""

    BATCH_UNAVAILABLE = "batch_unavailable"
    PARTICIPANT_UNAVAILABLE = "participant_unavailable"
    ACQUISITION_UNAVAILABLE = "acquisition_unavailable"


class TriggerSource(str, Enum):
    """Origin of an identity snapshot refresh request."""

    ACCOUNT_CHANGED = "account_changed"
    NEW_BLOCK = "new_block"
    ROLE_REQUESTED = "role_requested"
    STATUS_CHANGED = "status_changed"
    EXPLICIT = "explicit"


# =============================================================================
# Ledger Records
# =============================================================================


class BatchInput(BaseModel):
    """One (input batch, quantity) pair declared when a batch was created."""

    model_config = ConfigDict(frozen=True)

    batch_id: int = Field(..., gt=0, description="Consumed input batch id")
    quantity: int = Field(..., ge=0, description="Quantity consumed")


class Batch(BaseModel):
    """A quantity-tracked unit of produced goods recorded on the ledger.

    Attributes:
        batch_id: Positive ledger identifier.
        producer: Address of the participant that created the batch.
        name: Display name.
        description: Free-form description.
        total_quantity: Declared total quantity.
        available_quantity: Remaining quantity (ledger-side consumption only).
        inputs: Ordered input declarations.
        created_at: Ledger block time of creation.
        features: Raw feature string as stored on the ledger.
    """

    model_config = ConfigDict(frozen=True)

    batch_id: int = Field(..., gt=0)
    producer: str
    name: str = ""
    description: str = ""
    total_quantity: int = Field(default=0, ge=0)
    available_quantity: int = Field(default=0, ge=0)
    inputs: Tuple[BatchInput, ...] = ()
    created_at: int = Field(default=0, ge=0)
    features: str = ""

    @field_validator("producer")
    @classmethod
    def validate_producer(cls, v: str) -> str:
        """Normalise the producer address."""
        return normalize_address(v)

    @property
    def metadata(self) -> Optional[Dict[str, Any]]:
        """Decoded feature metadata, or None."""
        return parse_feature_metadata(self.features)


class Participant(BaseModel):
    """A registered ledger participant.

    Created implicitly on first registration request; status transitions
    only through ledger-side admin action.
    """

    model_config = ConfigDict(frozen=True)

    address: str
    role: Optional[ParticipantRole] = None
    pending_role: Optional[ParticipantRole] = None
    status: ApprovalStatus = ApprovalStatus.PENDING
    organization: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Normalise the participant address."""
        return normalize_address(v)


class TransferRecord(BaseModel):
    """An on-ledger custody-change proposal and its outcome."""

    model_config = ConfigDict(frozen=True)

    transfer_id: int = Field(..., ge=0)
    sender: str
    recipient: str
    batch_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=0)
    status: TransferStatus = TransferStatus.PENDING
    created_at: int = Field(default=0, ge=0)

    @field_validator("sender", "recipient")
    @classmethod
    def validate_addresses(cls, v: str) -> str:
        """Normalise sender and recipient addresses."""
        return normalize_address(v)


class RegistrationRequestEvent(BaseModel):
    """A role request emitted to the registration event stream."""

    model_config = ConfigDict(frozen=True)

    address: str
    requested_role: Optional[ParticipantRole] = None
    block_time: Optional[int] = None

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Normalise the requester address."""
        return normalize_address(v)


# =============================================================================
# Lineage
# =============================================================================


class LineageRoot(BaseModel):
    """Identity of the queried batch. Always disclosed to every viewer."""

    model_config = ConfigDict(frozen=True)

    batch_id: int
    name: str = ""
    producer: str
    producer_organization: Optional[str] = None
    producer_role: Optional[ParticipantRole] = None
    created_at: int = 0
    metadata: Optional[Dict[str, Any]] = None
    tx_hash: Optional[str] = None


class LineageNode(BaseModel):
    """One ancestor batch in a reconstructed lineage.

    A degraded node keeps only the fields that could be resolved; absent
    optional fields are None, never empty strings.

    Attributes:
        batch_id: Ancestor batch id.
        quantity: Quantity consumed by the batch that references it.
        tier: Distance from the root (0 = direct input).
        consumed_by: Batch id of the consuming batch.
        name: Batch name (absent when the batch record was unavailable).
        producer: Producer address.
        producer_organization: Producer organization (best-effort).
        producer_role: Producer role (best-effort).
        created_at: Declared creation time.
        acquired_at: Latest accepted transfer time to the consumer's producer.
        metadata: Decoded feature metadata.
        children: This node's own inputs (empty at the deepest tier).
        status: RESOLVED or DEGRADED.
        degradation_reasons: Enrichment steps that failed.
        time_ordering_violation: True when acquired_at < created_at.
    """

    model_config = ConfigDict(frozen=True)

    batch_id: int
    quantity: int
    tier: int = Field(..., ge=0, le=1)
    consumed_by: int
    name: Optional[str] = None
    producer: Optional[str] = None
    producer_organization: Optional[str] = None
    producer_role: Optional[ParticipantRole] = None
    created_at: Optional[int] = None
    acquired_at: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    children: Tuple["LineageNode", ...] = ()
    status: NodeStatus = NodeStatus.RESOLVED
    degradation_reasons: Tuple[DegradationReason, ...] = ()
    time_ordering_violation: bool = False

    @property
    def is_degraded(self) -> bool:
        return self.status is NodeStatus.DEGRADED


class LineageTree(BaseModel):
    """Root batch plus its ancestors, tiered by distance from the root.

    ``tiers`` is always a 2-tuple: tier 0 holds the root's direct inputs
    (each carrying its own inputs as ``children``), tier 1 holds those
    children flattened in declaration order.
    """

    model_config = ConfigDict(frozen=True)

    root: LineageRoot
    tiers: Tuple[Tuple[LineageNode, ...], Tuple[LineageNode, ...]] = ((), ())

    @property
    def root_batch_id(self) -> int:
        return self.root.batch_id

    def tier(self, index: int) -> Tuple[LineageNode, ...]:
        """Return the nodes at ``index`` distance from the root."""
        return self.tiers[index]

    def nodes(self) -> List[LineageNode]:
        """All nodes, tier by tier."""
        return [node for tier in self.tiers for node in tier]

    def degraded_nodes(self) -> List[LineageNode]:
        return [node for node in self.nodes() if node.is_degraded]

    def time_ordering_violations(self) -> List[LineageNode]:
        return [node for node in self.nodes() if node.time_ordering_violation]

    def assert_time_ordering(self) -> None:
        """Raise on the first node acquired before it was created.

        Raises:
            InconsistentTimeOrdering: If any node is flagged.
        """
        for node in self.time_ordering_violations():
            raise InconsistentTimeOrdering(
                node.batch_id, node.created_at or 0, node.acquired_at or 0,
            )

    def content_hash(self) -> str:
        """SHA-256 of the canonical JSON dump of the tree."""
        raw = json.dumps(
            self.model_dump(mode="json"), sort_keys=True, default=str,
        )
        return hashlib.sha256(raw.encode()).hexdigest()


LineageNode.model_rebuild()


# =============================================================================
# Identity
# =============================================================================


class IdentitySnapshot(BaseModel):
    """Point-in-time view of a participant's identity and authorization.

    Recomputed wholesale on every refresh. ``active_role`` is present only
    when ``status`` is exactly APPROVED.
    """

    model_config = ConfigDict(frozen=True)

    address: Optional[str] = None
    role: Optional[ParticipantRole] = None
    pending_role: Optional[ParticipantRole] = None
    status: Optional[ApprovalStatus] = None
    is_registered: bool = False
    organization: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    last_requested_role: Optional[ParticipantRole] = None
    last_requested_at: Optional[int] = None
    is_admin: bool = False
    request_conflict: bool = False
    refreshed_at: Optional[datetime] = None

    @computed_field
    @property
    def status_label(self) -> Optional[str]:
        return self.status.value if self.status is not None else None

    @computed_field
    @property
    def is_approved(self) -> bool:
        return self.status is ApprovalStatus.APPROVED

    @computed_field
    @property
    def active_role(self) -> Optional[ParticipantRole]:
        return self.role if self.is_approved else None


__all__ = [
    "HIDDEN_METADATA_KEYS",
    "normalize_address",
    "validate_batch_id",
    "parse_feature_metadata",
    "ParticipantRole",
    "ApprovalStatus",
    "TransferStatus",
    "NodeStatus",
    "DegradationReason",
    "TriggerSource",
    "BatchInput",
    "Batch",
    "Participant",
    "TransferRecord",
    "RegistrationRequestEvent",
    "LineageRoot",
    "LineageNode",
    "LineageTree",
    "IdentitySnapshot",
]
