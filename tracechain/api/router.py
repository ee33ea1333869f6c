# -*- coding: utf-8 -*-
"""
TraceChain REST API Router

FastAPI router for lineage and identity lookups, mounted at
``/api/v1/tracechain``.

Endpoints:
    GET  /lineage/{batch_id}?viewer=0x..  Viewer-filtered lineage tree
    GET  /identity/{address}              Cached (or first) snapshot
    POST /identity/{address}/refresh      Force a coalesced refresh

Error mapping:
    InvalidInputError     -> 400
    NotFoundError         -> 404
    TransientLedgerError  -> 503
"""

from __future__ import annotations

import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from tracechain.exceptions import (
    InvalidInputError,
    NotFoundError,
    TraceChainException,
    TransientLedgerError,
)
from tracechain.models import IdentitySnapshot, LineageTree

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/tracechain",
    tags=["tracechain"],
)


def _svc(request: Request):
    """Get the service attached to the application."""
    from tracechain.setup import get_tracechain
    return get_tracechain(request.app)


def _raise_http(exc: TraceChainException) -> NoReturn:
    if isinstance(exc, InvalidInputError):
        status_code = 400
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, TransientLedgerError):
        status_code = 503
    else:
        status_code = 500
    logger.info("Request failed with %d: %s", status_code, exc)
    raise HTTPException(status_code=status_code, detail=exc.to_dict())


# ---------------------------------------------------------------------------
# 1. GET /lineage/{batch_id}
# ---------------------------------------------------------------------------
@router.get("/lineage/{batch_id}", response_model=LineageTree)
async def get_lineage(
    request: Request,
    batch_id: int,
    viewer: Optional[str] = Query(None, description="Viewer address"),
) -> LineageTree:
    """Resolve a batch's lineage, filtered for the viewer."""
    try:
        return await _svc(request).lineage_for_viewer(batch_id, viewer)
    except TraceChainException as exc:
        _raise_http(exc)


# ---------------------------------------------------------------------------
# 2. GET /identity/{address}
# ---------------------------------------------------------------------------
@router.get("/identity/{address}", response_model=IdentitySnapshot)
async def get_identity(request: Request, address: str) -> IdentitySnapshot:
    """Return a participant's identity snapshot."""
    try:
        return await _svc(request).get_identity(address)
    except TraceChainException as exc:
        _raise_http(exc)


# ---------------------------------------------------------------------------
# 3. POST /identity/{address}/refresh
# ---------------------------------------------------------------------------
@router.post("/identity/{address}/refresh", response_model=IdentitySnapshot)
async def post_refresh_identity(
    request: Request,
    address: str,
) -> IdentitySnapshot:
    """Refresh a participant's identity snapshot."""
    try:
        return await _svc(request).refresh_identity(address)
    except TraceChainException as exc:
        _raise_http(exc)
