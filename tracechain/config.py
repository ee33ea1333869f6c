# -*- coding: utf-8 -*-
"""
TraceChain Service Configuration

Centralized configuration for the TraceChain provenance engine covering:
- Ledger source: JSON snapshot path for the in-memory ledger
- Historical transaction index: subgraph URL and timeout
- Lineage resolution: depth and sibling-enrichment concurrency
- Identity snapshot: inbound trigger queue bound
- Logging level

All settings can be overridden via environment variables with the
``TRACECHAIN_`` prefix (e.g. ``TRACECHAIN_SUBGRAPH_URL``).

Example:
    >>> from tracechain.config import get_config
    >>> cfg = get_config()
    >>> print(cfg.subgraph_url, cfg.enrich_concurrently)
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment variable prefix
# ---------------------------------------------------------------------------

_ENV_PREFIX = "TRACECHAIN_"

#: Lineage is always expanded exactly two tiers below the root.
LINEAGE_DEPTH = 2


# ---------------------------------------------------------------------------
# TraceChainConfig
# ---------------------------------------------------------------------------


@dataclass
class TraceChainConfig:
    """Complete configuration for the TraceChain provenance engine.

    Attributes:
        ledger_snapshot_path: JSON file loaded into InMemoryLedger.
        subgraph_url: GraphQL endpoint of the historical transaction index.
        subgraph_timeout_seconds: Timeout for index lookups.
        enrich_concurrently: Enrich sibling nodes of a tier concurrently.
        snapshot_queue_size: Bound of the identity trigger queue (0 = none).
        log_level: Logging level for the service.
    """

    # -- Ledger --------------------------------------------------------------
    ledger_snapshot_path: str = ""

    # -- Historical transaction index ----------------------------------------
    subgraph_url: str = ""
    subgraph_timeout_seconds: float = 10.0

    # -- Lineage resolution --------------------------------------------------
    enrich_concurrently: bool = True

    # -- Identity snapshot ---------------------------------------------------
    snapshot_queue_size: int = 0

    # -- Logging -------------------------------------------------------------
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.snapshot_queue_size < 0:
            raise ValueError("snapshot_queue_size must be >= 0")

    # ------------------------------------------------------------------
    # Factory helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> TraceChainConfig:
        """Build a TraceChainConfig from environment variables.

        Every field can be overridden via ``TRACECHAIN_<FIELD_UPPER>``.
        Boolean values accept ``true/1/yes`` (case-insensitive).

        Returns:
            Populated TraceChainConfig instance.
        """
        prefix = _ENV_PREFIX

        def _env(name: str, default: Any = None) -> Optional[str]:
            return os.environ.get(f"{prefix}{name}", default)

        def _bool(name: str, default: bool) -> bool:
            val = _env(name)
            if val is None:
                return default
            return val.lower() in ("true", "1", "yes")

        def _int(name: str, default: int) -> int:
            val = _env(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                logger.warning(
                    "Invalid integer for %s%s=%s, using default %d",
                    prefix, name, val, default,
                )
                return default

        def _float(name: str, default: float) -> float:
            val = _env(name)
            if val is None:
                return default
            try:
                return float(val)
            except ValueError:
                logger.warning(
                    "Invalid float for %s%s=%s, using default %f",
                    prefix, name, val, default,
                )
                return default

        def _str(name: str, default: str) -> str:
            val = _env(name)
            if val is None:
                return default
            return val

        config = cls(
            ledger_snapshot_path=_str(
                "LEDGER_SNAPSHOT_PATH", cls.ledger_snapshot_path,
            ),
            subgraph_url=_str("SUBGRAPH_URL", cls.subgraph_url),
            subgraph_timeout_seconds=_float(
                "SUBGRAPH_TIMEOUT_SECONDS", cls.subgraph_timeout_seconds,
            ),
            enrich_concurrently=_bool(
                "ENRICH_CONCURRENTLY", cls.enrich_concurrently,
            ),
            snapshot_queue_size=_int(
                "SNAPSHOT_QUEUE_SIZE", cls.snapshot_queue_size,
            ),
            log_level=_str("LOG_LEVEL", cls.log_level),
        )

        logger.info(
            "TraceChainConfig loaded: snapshot=%s, subgraph=%s, "
            "timeout=%.1fs, concurrent=%s, queue=%d",
            config.ledger_snapshot_path or "<none>",
            config.subgraph_url or "<none>",
            config.subgraph_timeout_seconds,
            config.enrich_concurrently,
            config.snapshot_queue_size,
        )
        return config


# ---------------------------------------------------------------------------
# Thread-safe singleton accessor
# ---------------------------------------------------------------------------

_config_instance: Optional[TraceChainConfig] = None
_config_lock = threading.Lock()


def get_config() -> TraceChainConfig:
    """Return the singleton TraceChainConfig, creating from env if needed."""
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = TraceChainConfig.from_env()
    return _config_instance


def set_config(config: TraceChainConfig) -> None:
    """Replace the singleton TraceChainConfig (useful for testing).

    Args:
        config: New configuration to install.
    """
    global _config_instance
    with _config_lock:
        _config_instance = config
    logger.info("TraceChainConfig replaced programmatically")


def reset_config() -> None:
    """Reset the singleton (primarily for test teardown)."""
    global _config_instance
    with _config_lock:
        _config_instance = None


__all__ = [
    "LINEAGE_DEPTH",
    "TraceChainConfig",
    "get_config",
    "set_config",
    "reset_config",
]
