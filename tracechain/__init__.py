# -*- coding: utf-8 -*-
"""
TraceChain: Supply-Chain Provenance Engine
==========================================

This package reconstructs the production lineage of batches recorded on a
supply-chain ledger and discloses it according to the viewer's approved
role. It supports:

- Two-tier lineage resolution from batch composition declarations
- Acquisition-time inference from accepted custody transfers
- Partial-failure tolerance with per-node degradation reasons
- Role-based visibility filtering from a single disclosure policy table
- Identity & authorization snapshots with coalesced refreshes
- Best-effort root transaction hashes from a GraphQL subgraph
- 7 Prometheus metrics for observability
- FastAPI REST API and a typer CLI
- Thread-safe configuration with TRACECHAIN_ env prefix

Key Components:
    - config: TraceChainConfig with TRACECHAIN_ env prefix
    - models: Pydantic v2 models for ledger records, lineage and identity
    - ledger: Ledger Query Interface, in-memory and raw-view adapters
    - temporal_correlator: Latest accepted transfer time
    - provenance_resolver: Two-tier lineage builder
    - visibility_filter: Role-based disclosure
    - identity_snapshot: Identity & authorization snapshots
    - tx_index: Historical transaction hash lookup
    - metrics: 7 Prometheus metrics
    - api: FastAPI HTTP service
    - setup: TraceChainService facade

Example:
    >>> from tracechain import TraceChainService, InMemoryLedger
    >>> service = TraceChainService(ledger=InMemoryLedger.from_json_file("ledger.json"))
    >>> tree = await service.lineage_for_viewer(10, viewer="0x...")
    >>> [node.batch_id for node in tree.tier(0)]
    [7]
"""

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
from tracechain.config import (
    LINEAGE_DEPTH,
    TraceChainConfig,
    get_config,
    set_config,
    reset_config,
)

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
from tracechain.exceptions import (
    TraceChainException,
    InvalidInputError,
    NotFoundError,
    BatchNotFound,
    ParticipantNotFound,
    TransientLedgerError,
    StaleViewpointError,
    MalformedRecordError,
    InconsistentTimeOrdering,
    is_retriable,
)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
from tracechain.models import (
    # Enumerations
    ParticipantRole,
    ApprovalStatus,
    TransferStatus,
    NodeStatus,
    DegradationReason,
    TriggerSource,
    # Ledger records
    BatchInput,
    Batch,
    Participant,
    TransferRecord,
    RegistrationRequestEvent,
    # Results
    LineageRoot,
    LineageNode,
    LineageTree,
    IdentitySnapshot,
)

# ---------------------------------------------------------------------------
# Core engines
# ---------------------------------------------------------------------------
from tracechain.ledger import (
    LedgerQueryInterface,
    InMemoryLedger,
    RawViewLedger,
    classify_ledger_error,
)
from tracechain.temporal_correlator import (
    TemporalCorrelator,
    latest_accepted_transfer_time,
)
from tracechain.provenance_resolver import ProvenanceResolver
from tracechain.visibility_filter import (
    DISCLOSURE_POLICY,
    DisclosurePolicy,
    visible_tiers,
    visible_for,
)
from tracechain.identity_snapshot import (
    AdministratorAddressCell,
    IdentitySnapshotResolver,
    compose_snapshot,
    empty_snapshot,
)
from tracechain.tx_index import SubgraphTxIndex

# ---------------------------------------------------------------------------
# Service setup facade
# ---------------------------------------------------------------------------
from tracechain.setup import (
    TraceChainService,
    configure_tracechain,
    get_tracechain,
    get_router,
)

__all__ = [
    "__version__",
    # Configuration
    "LINEAGE_DEPTH",
    "TraceChainConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Errors
    "TraceChainException",
    "InvalidInputError",
    "NotFoundError",
    "BatchNotFound",
    "ParticipantNotFound",
    "TransientLedgerError",
    "StaleViewpointError",
    "MalformedRecordError",
    "InconsistentTimeOrdering",
    "is_retriable",
    # Models
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
    # Engines
    "LedgerQueryInterface",
    "InMemoryLedger",
    "RawViewLedger",
    "classify_ledger_error",
    "TemporalCorrelator",
    "latest_accepted_transfer_time",
    "ProvenanceResolver",
    "DISCLOSURE_POLICY",
    "DisclosurePolicy",
    "visible_tiers",
    "visible_for",
    "AdministratorAddressCell",
    "IdentitySnapshotResolver",
    "compose_snapshot",
    "empty_snapshot",
    "SubgraphTxIndex",
    # Service
    "TraceChainService",
    "configure_tracechain",
    "get_tracechain",
    "get_router",
]
