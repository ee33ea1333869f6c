# -*- coding: utf-8 -*-
"""
Historical Transaction Index - TraceChain

Best-effort lookup of the transaction hash that created a batch, served by
a GraphQL subgraph that indexes ledger history. Consulted purely for
display: every failure is logged and answered with None, never raised.

Example:
    >>> index = SubgraphTxIndex("http://localhost:8000/subgraphs/name/tracechain")
    >>> tx_hash = await index.tx_hash_for_batch(10)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

_BATCH_TX_QUERY = """
query BatchTx($id: ID!) {
  token(id: $id) {
    txHash
  }
}
"""


class SubgraphTxIndex:
    """Read-only client for the historical transaction-hash subgraph.

    Attributes:
        url: GraphQL endpoint.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client
        logger.info("SubgraphTxIndex initialized: url=%s", url)

    async def _query(self, query: str, variables: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        payload = {"query": query, "variables": variables}
        try:
            if self._client is not None:
                response = await self._client.post(
                    self.url, json=payload, timeout=self.timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Subgraph query failed: %s", exc)
            return None

        if not isinstance(body, dict):
            logger.warning("Subgraph returned a non-object body")
            return None
        if body.get("errors"):
            logger.warning("Subgraph errors: %s", body["errors"])
            return None
        return body.get("data")

    async def tx_hash_for_batch(self, batch_id: int) -> Optional[str]:
        """Return the creating transaction hash of a batch, if indexed."""
        data = await self._query(_BATCH_TX_QUERY, {"id": str(batch_id)})
        token = (data or {}).get("token")
        if not isinstance(token, dict):
            return None
        tx_hash = token.get("txHash")
        return str(tx_hash) if tx_hash else None

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


__all__ = ["SubgraphTxIndex"]
