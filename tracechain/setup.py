# -*- coding: utf-8 -*-
"""
TraceChain Service Facade

Provides the main service class and FastAPI integration functions:
- TraceChainService: Composes resolver, visibility filter and identity
  snapshots into a single facade
- configure_tracechain(app): Register service on FastAPI app
- get_tracechain(app): Retrieve service from app state
- get_router(): Return FastAPI router for mounting
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from tracechain.config import TraceChainConfig, get_config
from tracechain.identity_snapshot import IdentitySnapshotResolver
from tracechain.ledger import InMemoryLedger, LedgerQueryInterface
from tracechain.models import IdentitySnapshot, LineageTree
from tracechain.provenance_resolver import ProvenanceResolver
from tracechain.tx_index import SubgraphTxIndex
from tracechain.visibility_filter import visible_for, visible_tiers

logger = logging.getLogger(__name__)


class TraceChainService:
    """Facade composing the TraceChain engines.

    Attributes:
        config: TraceChainConfig instance.
        ledger: LedgerQueryInterface all engines read through.
        tx_index: Optional SubgraphTxIndex for root transaction hashes.
        resolver: ProvenanceResolver instance.
        identity: IdentitySnapshotResolver instance.
    """

    def __init__(
        self,
        config: Optional[TraceChainConfig] = None,
        ledger: Optional[LedgerQueryInterface] = None,
        tx_index: Optional[SubgraphTxIndex] = None,
    ):
        """Initialize the service.

        Args:
            config: TraceChainConfig instance. If None, loads from env.
            ledger: Ledger to read. If None, the JSON snapshot at
                ``config.ledger_snapshot_path`` is loaded.
            tx_index: Transaction index. If None and ``config.subgraph_url``
                is set, a SubgraphTxIndex is created.

        Raises:
            ValueError: If no ledger is given and none is configured.
        """
        if config is None:
            config = get_config()
        self.config = config

        if ledger is None:
            if not config.ledger_snapshot_path:
                raise ValueError(
                    "No ledger given and TRACECHAIN_LEDGER_SNAPSHOT_PATH not set"
                )
            ledger = InMemoryLedger.from_json_file(config.ledger_snapshot_path)
        self.ledger = ledger

        if tx_index is None and config.subgraph_url:
            tx_index = SubgraphTxIndex(
                config.subgraph_url, timeout=config.subgraph_timeout_seconds,
            )
        self.tx_index = tx_index

        self.resolver = ProvenanceResolver(ledger, config=config, tx_index=tx_index)
        self.identity = IdentitySnapshotResolver(ledger, config=config)

        logger.info("TraceChainService initialized")

    # =========================================================================
    # Lineage
    # =========================================================================

    async def resolve_lineage(self, batch_id: int) -> LineageTree:
        """Unfiltered two-tier lineage. Delegates to ProvenanceResolver."""
        return await self.resolver.resolve_lineage(batch_id)

    async def lineage_for_viewer(
        self,
        batch_id: int,
        viewer: Optional[str] = None,
    ) -> LineageTree:
        """Resolve a lineage and disclose only what ``viewer`` may see.

        The viewer's snapshot is refreshed first; without a viewer the
        most restrictive disclosure applies.

        Args:
            batch_id: Queried batch id.
            viewer: Viewer address, or None for an anonymous viewer.

        Returns:
            Filtered LineageTree.
        """
        tree = await self.resolver.resolve_lineage(batch_id)
        if viewer is None:
            return visible_tiers(tree, None)
        snapshot = await self.identity.refresh(viewer)
        return visible_for(tree, snapshot)

    # =========================================================================
    # Identity
    # =========================================================================

    async def refresh_identity(self, address: str) -> IdentitySnapshot:
        """Refresh and return a participant's snapshot."""
        return await self.identity.refresh(address)

    async def get_identity(self, address: str) -> IdentitySnapshot:
        """Cached snapshot, refreshed once if none has been published."""
        snapshot = self.identity.get(address)
        if snapshot is None:
            snapshot = await self.identity.refresh(address)
        return snapshot

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def startup(self) -> None:
        await self.identity.start()
        logger.info("TraceChainService started")

    async def shutdown(self) -> None:
        await self.identity.close()
        if self.tx_index is not None:
            await self.tx_index.aclose()
        logger.info("TraceChainService stopped")


# =============================================================================
# FastAPI Integration
# =============================================================================

_SERVICE_KEY = "tracechain_service"


def configure_tracechain(
    app: Any,
    config: Optional[TraceChainConfig] = None,
    ledger: Optional[LedgerQueryInterface] = None,
) -> TraceChainService:
    """Register the TraceChain service on a FastAPI application.

    Creates the service, attaches it to app.state and includes the API
    router. Call ``service.startup()`` and ``service.shutdown()`` from the
    application lifespan to run the identity trigger dispatcher.

    Args:
        app: FastAPI application instance.
        config: Optional config; loaded from env if None.
        ledger: Optional ledger; loaded from the configured snapshot if None.

    Returns:
        Configured TraceChainService instance.
    """
    config = config or get_config()
    logging.getLogger("tracechain").setLevel(config.log_level.upper())

    service = TraceChainService(config=config, ledger=ledger)
    setattr(app.state, _SERVICE_KEY, service)

    app.include_router(get_router())

    logger.info("TraceChain service configured on FastAPI app")
    return service


def get_tracechain(app: Any) -> TraceChainService:
    """Retrieve the TraceChain service from a FastAPI application.

    Raises:
        RuntimeError: If service not configured.
    """
    service = getattr(app.state, _SERVICE_KEY, None)
    if service is None:
        raise RuntimeError(
            "TraceChain service not configured. "
            "Call configure_tracechain(app) first."
        )
    return service


def get_router():
    """Return the FastAPI router for the TraceChain service."""
    from tracechain.api.router import router
    return router


__all__ = [
    "TraceChainService",
    "configure_tracechain",
    "get_tracechain",
    "get_router",
]
