# -*- coding: utf-8 -*-
"""
Identity & Authorization Snapshot - TraceChain

Materializes who a participant is and what they may do by combining their
live participant record with the latest registration-request event for
their address. Snapshots are recomputed wholesale on every refresh.

Refresh coalescing:
    At most one refresh runs per address at a time. Triggers that arrive
    while a refresh is in flight collapse into a single follow-up refresh
    that starts once the in-flight one completes, however many there were.

Trigger sources (account change, new ledger block, role requested, status
changed, explicit calls) all push onto one inbound queue; the resolver's
dispatcher owns the coalescing, not the sources.

Failure behavior:
    A participant that is not registered yields a snapshot with
    ``is_registered=False``. Any other read failure yields an empty
    snapshot rather than an error.

Example:
    >>> resolver = IdentitySnapshotResolver(ledger)
    >>> snapshot = await resolver.refresh("0xabc...")
    >>> snapshot.active_role
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tracechain.config import get_config
from tracechain.exceptions import ParticipantNotFound, TraceChainException
from tracechain.ledger import LedgerQueryInterface
from tracechain.metrics import record_identity_refresh, record_refresh_coalesced
from tracechain.models import (
    IdentitySnapshot,
    Participant,
    RegistrationRequestEvent,
    TriggerSource,
    normalize_address,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Administrator address
# =============================================================================


class AdministratorAddressCell:
    """Lazily fetched, assign-once holder for the administrator address.

    The first successful fetch wins and is never replaced. Failed fetches
    propagate and leave the cell empty so a later call can try again.
    """

    def __init__(self, ledger: LedgerQueryInterface) -> None:
        self._ledger = ledger
        self._value: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def value(self) -> Optional[str]:
        return self._value

    async def get(self) -> str:
        if self._value is not None:
            return self._value
        async with self._lock:
            if self._value is None:
                address = normalize_address(
                    await self._ledger.administrator_address()
                )
                self._value = address
                logger.info("Administrator address resolved: %s", address)
        return self._value


# =============================================================================
# Snapshot composition
# =============================================================================


def _now() -> datetime:
    return datetime.now(timezone.utc)


def empty_snapshot(address: Optional[str] = None) -> IdentitySnapshot:
    """Snapshot of a participant about whom nothing could be read."""
    return IdentitySnapshot(address=address, refreshed_at=_now())


def compose_snapshot(
    address: str,
    participant: Optional[Participant],
    events: Sequence[RegistrationRequestEvent],
    administrator: Optional[str],
) -> IdentitySnapshot:
    """Combine a participant record and its request events into a snapshot.

    Args:
        address: Normalized participant address.
        participant: Live record, or None when unregistered.
        events: The address's registration requests, oldest first.
        administrator: Normalized administrator address, if known.

    Returns:
        IdentitySnapshot. The on-ledger pending role is preferred over the
        latest event's requested role; the request time always comes from
        the latest event. Disagreement between the two is flagged as
        ``request_conflict``.
    """
    latest = events[-1] if events else None
    pending = participant.pending_role if participant is not None else None
    event_role = latest.requested_role if latest is not None else None

    conflict = pending is not None and event_role is not None and pending != event_role
    if conflict:
        logger.warning(
            "Pending role of %s disagrees with latest request event: "
            "ledger=%s event=%s",
            address, pending.value, event_role.value,
        )

    fields: Dict[str, Any] = {
        "address": address,
        "last_requested_role": pending if pending is not None else event_role,
        "last_requested_at": latest.block_time if latest is not None else None,
        "is_admin": administrator is not None and address == administrator,
        "request_conflict": conflict,
        "refreshed_at": _now(),
    }
    if participant is not None:
        fields.update(
            role=participant.role,
            pending_role=participant.pending_role,
            status=participant.status,
            is_registered=True,
            organization=participant.organization,
            first_name=participant.first_name,
            last_name=participant.last_name,
        )
    return IdentitySnapshot(**fields)


async def load_snapshot(
    ledger: LedgerQueryInterface,
    administrator: AdministratorAddressCell,
    address: str,
) -> IdentitySnapshot:
    """Read everything a snapshot needs and compose it.

    Never raises for ledger failures; they produce an empty snapshot.
    """
    address = normalize_address(address)
    try:
        admin = await administrator.get()
        try:
            participant: Optional[Participant] = await ledger.get_participant(address)
        except ParticipantNotFound:
            participant = None
        events = await ledger.registration_request_events(address)
    except TraceChainException as exc:
        logger.warning("Identity refresh for %s failed: %s", address, exc)
        record_identity_refresh("fallback")
        return empty_snapshot(address)

    record_identity_refresh("success")
    return compose_snapshot(address, participant, events, admin)


# =============================================================================
# Refresh coalescing
# =============================================================================


class SlotState(str, Enum):
    """Lifecycle of one address's snapshot."""

    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"


@dataclass
class _Slot:
    state: SlotState = SlotState.EMPTY
    snapshot: Optional[IdentitySnapshot] = None
    task: Optional[asyncio.Task] = None
    follow_up: bool = False
    refresh_count: int = 0

    @property
    def in_flight(self) -> bool:
        return self.task is not None and not self.task.done()


class IdentitySnapshotResolver:
    """Per-address snapshot cache with coalesced refreshes.

    Attributes:
        config: TraceChainConfig (queue bound).
        administrator: Shared AdministratorAddressCell.
    """

    def __init__(
        self,
        ledger: LedgerQueryInterface,
        config: Optional[Any] = None,
        administrator: Optional[AdministratorAddressCell] = None,
    ) -> None:
        self.config = config or get_config()
        self._ledger = ledger
        self.administrator = administrator or AdministratorAddressCell(ledger)
        self._slots: Dict[str, _Slot] = {}
        self._queue: asyncio.Queue = asyncio.Queue(
            maxsize=getattr(self.config, "snapshot_queue_size", 0)
        )
        self._running = False
        self._dispatcher_task: Optional[asyncio.Task] = None

        logger.info(
            "IdentitySnapshotResolver initialized (queue=%d)",
            self._queue.maxsize,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, address: str) -> Optional[IdentitySnapshot]:
        """Latest published snapshot for ``address``, if any."""
        slot = self._slots.get(normalize_address(address))
        return slot.snapshot if slot is not None else None

    def state(self, address: str) -> SlotState:
        slot = self._slots.get(normalize_address(address))
        return slot.state if slot is not None else SlotState.EMPTY

    def refresh_count(self, address: str) -> int:
        """Number of refreshes actually executed for ``address``."""
        slot = self._slots.get(normalize_address(address))
        return slot.refresh_count if slot is not None else 0

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def trigger(self, address: str) -> asyncio.Task:
        """Request a refresh, coalescing with any refresh in flight.

        Returns:
            The task that will publish a snapshot reflecting this trigger.
        """
        address = normalize_address(address)
        slot = self._slots.setdefault(address, _Slot())

        if slot.in_flight:
            slot.follow_up = True
            record_refresh_coalesced()
            logger.debug("Refresh of %s coalesced into in-flight task", address)
            return slot.task

        slot.follow_up = False
        slot.state = SlotState.LOADING
        slot.task = asyncio.create_task(self._run(address, slot))
        return slot.task

    async def refresh(self, address: str) -> IdentitySnapshot:
        """Trigger a refresh and wait for the snapshot it publishes."""
        task = self.trigger(address)
        return await asyncio.shield(task)

    def submit(
        self,
        address: str,
        source: TriggerSource = TriggerSource.EXPLICIT,
    ) -> bool:
        """Push a refresh request onto the inbound queue.

        Returns:
            False if the queue is full and the request was dropped.
        """
        address = normalize_address(address)
        try:
            self._queue.put_nowait((address, source))
        except asyncio.QueueFull:
            logger.error("Trigger queue full, %s refresh for %s dropped",
                         source.value, address)
            return False
        return True

    async def _run(self, address: str, slot: _Slot) -> IdentitySnapshot:
        while True:
            slot.state = SlotState.LOADING
            try:
                snapshot = await load_snapshot(
                    self._ledger, self.administrator, address,
                )
            except asyncio.CancelledError:
                slot.state = (
                    SlotState.READY if slot.snapshot is not None
                    else SlotState.EMPTY
                )
                raise
            slot.snapshot = snapshot
            slot.state = SlotState.READY
            slot.refresh_count += 1
            if not slot.follow_up:
                return snapshot
            slot.follow_up = False
            logger.debug("Running follow-up refresh of %s", address)

    # ------------------------------------------------------------------
    # Dispatcher lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start consuming the inbound trigger queue."""
        if self._running:
            logger.warning("IdentitySnapshotResolver is already running")
            return
        self._running = True
        self._dispatcher_task = asyncio.create_task(self._dispatch())
        logger.info("IdentitySnapshotResolver started")

    async def join(self) -> None:
        """Wait until queued triggers and their refreshes have finished."""
        await self._queue.join()
        tasks: List[asyncio.Task] = [
            slot.task for slot in self._slots.values() if slot.in_flight
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Stop the dispatcher and cancel refreshes in flight."""
        self._running = False
        if self._dispatcher_task is not None:
            self._dispatcher_task.cancel()
            try:
                await self._dispatcher_task
            except asyncio.CancelledError:
                pass
            self._dispatcher_task = None

        pending: List[asyncio.Task] = [
            slot.task for slot in self._slots.values() if slot.in_flight
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        while not self._queue.empty():
            try:
                self._queue.get_nowait()
                self._queue.task_done()
            except asyncio.QueueEmpty:
                break
        logger.info("IdentitySnapshotResolver shutdown complete")

    async def _dispatch(self) -> None:
        while self._running:
            item: Tuple[str, TriggerSource] = await self._queue.get()
            address, source = item
            try:
                logger.debug("Trigger %s for %s", source.value, address)
                self.trigger(address)
            finally:
                self._queue.task_done()


__all__ = [
    "AdministratorAddressCell",
    "IdentitySnapshotResolver",
    "SlotState",
    "compose_snapshot",
    "empty_snapshot",
    "load_snapshot",
]
