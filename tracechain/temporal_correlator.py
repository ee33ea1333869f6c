# -*- coding: utf-8 -*-
"""
Temporal Correlator - TraceChain

Infers when a batch actually changed custody into a recipient's hands by
scanning the recipient's transfer records for the latest accepted transfer
of that batch.

Example:
    >>> correlator = TemporalCorrelator(ledger)
    >>> when = await correlator.latest_accepted_transfer_time(3, recipient)
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from tracechain.ledger import LedgerQueryInterface
from tracechain.models import (
    TransferRecord,
    TransferStatus,
    normalize_address,
    validate_batch_id,
)

logger = logging.getLogger(__name__)


def latest_accepted_time(
    transfers: Iterable[TransferRecord],
    batch_id: int,
    recipient: str,
) -> Optional[int]:
    """Reduce transfer records to the latest accepted arrival of a batch.

    Record order does not matter; the maximum creation time wins.

    Returns:
        The creation time of the latest matching accepted transfer, or
        None when nothing matches.
    """
    latest: Optional[int] = None
    for transfer in transfers:
        if (
            transfer.recipient == recipient
            and transfer.batch_id == batch_id
            and transfer.status is TransferStatus.ACCEPTED
        ):
            if latest is None or transfer.created_at > latest:
                latest = transfer.created_at
    return latest


async def latest_accepted_transfer_time(
    ledger: LedgerQueryInterface,
    batch_id: int,
    recipient: str,
) -> Optional[int]:
    """Return when ``recipient`` last accepted custody of ``batch_id``.

    Issues exactly one ledger read. Query failures propagate unmodified;
    there is no retry and no default substitution.

    Args:
        ledger: Ledger to read from.
        batch_id: Positive batch id.
        recipient: Well-formed recipient address.

    Returns:
        Block time of the latest accepted transfer, or None if unknown.

    Raises:
        InvalidInputError: On a malformed address or batch id.
    """
    validate_batch_id(batch_id)
    recipient = normalize_address(recipient)
    transfers = await ledger.get_transfers_involving(recipient)
    latest = latest_accepted_time(transfers, batch_id, recipient)
    logger.debug(
        "Correlated batch %d -> %s over %d transfers: %s",
        batch_id, recipient[:10], len(transfers), latest,
    )
    return latest


class TemporalCorrelator:
    """Ledger-bound wrapper around latest_accepted_transfer_time."""

    def __init__(self, ledger: LedgerQueryInterface) -> None:
        self._ledger = ledger

    async def latest_accepted_transfer_time(
        self,
        batch_id: int,
        recipient: str,
    ) -> Optional[int]:
        return await latest_accepted_transfer_time(
            self._ledger, batch_id, recipient,
        )


__all__ = [
    "TemporalCorrelator",
    "latest_accepted_time",
    "latest_accepted_transfer_time",
]
