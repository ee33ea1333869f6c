"""
Test suite for Identity & Authorization Snapshots

Tests snapshot composition and refresh scheduling including:
- Composition from participant records and request events
- Pending role disagreement flagging
- Unregistered participants and failure fallback
- Assign-once administrator address
- Refresh coalescing (N triggers in flight -> exactly one follow-up)
- Slot state transitions and cancelled waiters
- Inbound trigger queue dispatch
"""

import asyncio
from typing import Optional
from unittest.mock import AsyncMock

import pytest

from tracechain.config import TraceChainConfig
from tracechain.exceptions import InvalidInputError, TransientLedgerError
from tracechain.identity_snapshot import (
    AdministratorAddressCell,
    IdentitySnapshotResolver,
    SlotState,
    compose_snapshot,
    empty_snapshot,
)
from tracechain.ledger import InMemoryLedger, RawViewLedger
from tracechain.models import (
    ApprovalStatus,
    Participant,
    ParticipantRole,
    RegistrationRequestEvent,
    TriggerSource,
)

from conftest import (
    ADMIN,
    APPLICANT,
    CONSUMER,
    DISTRIBUTOR,
    STRANGER,
    FlakyLedger,
    scenario_snapshot,
)

Role = ParticipantRole


class GatedLedger(InMemoryLedger):
    """Ledger whose participant reads block until ``gate`` is set."""

    gate: Optional[asyncio.Event] = None

    async def get_participant(self, address):
        if self.gate is not None:
            await self.gate.wait()
        return await super().get_participant(address)


def _event(role, block_time, address=APPLICANT):
    return RegistrationRequestEvent(
        address=address, requested_role=role, block_time=block_time,
    )


class TestComposeSnapshot:
    """Test pure snapshot composition."""

    def test_approved_participant(self):
        participant = Participant(
            address=CONSUMER,
            role=Role.CONSUMER,
            status=ApprovalStatus.APPROVED,
            organization="Shop Ltd",
        )
        snapshot = compose_snapshot(CONSUMER, participant, [], ADMIN)

        assert snapshot.is_registered is True
        assert snapshot.is_approved is True
        assert snapshot.status_label == "Approved"
        assert snapshot.active_role is Role.CONSUMER
        assert snapshot.organization == "Shop Ltd"
        assert snapshot.last_requested_role is None
        assert snapshot.last_requested_at is None
        assert snapshot.is_admin is False
        assert snapshot.refreshed_at is not None

    def test_unapproved_role_is_not_active(self):
        participant = Participant(
            address=CONSUMER, role=Role.CONSUMER, status=ApprovalStatus.REJECTED,
        )
        snapshot = compose_snapshot(CONSUMER, participant, [], None)

        assert snapshot.role is Role.CONSUMER
        assert snapshot.active_role is None
        assert snapshot.status_label == "Rejected"

    def test_pending_role_preferred_over_event(self):
        """Test the on-ledger pending role wins and time comes from the event."""
        participant = Participant(address=APPLICANT, pending_role=Role.PROCESSOR)
        events = [_event(Role.DISTRIBUTOR, 800), _event(Role.PROCESSOR, 900)]

        snapshot = compose_snapshot(APPLICANT, participant, events, ADMIN)

        assert snapshot.last_requested_role is Role.PROCESSOR
        assert snapshot.last_requested_at == 900
        assert snapshot.request_conflict is False

    def test_event_role_used_without_pending(self):
        participant = Participant(address=APPLICANT)
        snapshot = compose_snapshot(
            APPLICANT, participant, [_event(Role.DISTRIBUTOR, 800)], ADMIN,
        )

        assert snapshot.last_requested_role is Role.DISTRIBUTOR
        assert snapshot.last_requested_at == 800

    def test_disagreement_is_flagged(self):
        """Test that a newer event disagreeing with the ledger is flagged."""
        participant = Participant(address=APPLICANT, pending_role=Role.DISTRIBUTOR)
        events = [_event(Role.DISTRIBUTOR, 800), _event(Role.PROCESSOR, 900)]

        snapshot = compose_snapshot(APPLICANT, participant, events, ADMIN)

        assert snapshot.request_conflict is True
        assert snapshot.last_requested_role is Role.DISTRIBUTOR
        assert snapshot.last_requested_at == 900

    def test_unregistered_administrator(self):
        snapshot = compose_snapshot(ADMIN, None, [], ADMIN)

        assert snapshot.is_registered is False
        assert snapshot.is_admin is True
        assert snapshot.status is None
        assert snapshot.status_label is None

    def test_empty_snapshot(self):
        snapshot = empty_snapshot(CONSUMER)

        assert snapshot.address == CONSUMER
        assert snapshot.is_registered is False
        assert snapshot.is_admin is False
        assert snapshot.active_role is None


class TestAdministratorAddressCell:
    """Test the assign-once administrator address."""

    @pytest.mark.asyncio
    async def test_fetched_once_and_normalised(self, ledger):
        cell = AdministratorAddressCell(ledger)
        assert cell.value is None

        assert await cell.get() == ADMIN
        assert await cell.get() == ADMIN
        assert ledger.calls["administrator_address"] == 1

    @pytest.mark.asyncio
    async def test_failure_leaves_cell_empty(self, flaky_ledger):
        flaky_ledger.fail("administrator_address")
        cell = AdministratorAddressCell(flaky_ledger)

        with pytest.raises(TransientLedgerError):
            await cell.get()
        assert cell.value is None

        flaky_ledger.failures.clear()
        assert await cell.get() == ADMIN


class TestRefresh:
    """Test ledger-backed refreshes."""

    @pytest.mark.asyncio
    async def test_registered_participant(self, ledger, config):
        resolver = IdentitySnapshotResolver(ledger, config)
        snapshot = await resolver.refresh(APPLICANT)

        assert snapshot.address == APPLICANT
        assert snapshot.is_registered is True
        assert snapshot.status is ApprovalStatus.PENDING
        assert snapshot.pending_role is Role.PROCESSOR
        assert snapshot.last_requested_role is Role.PROCESSOR
        assert snapshot.last_requested_at == 900
        assert resolver.get(APPLICANT) == snapshot
        assert resolver.state(APPLICANT) is SlotState.READY

    @pytest.mark.asyncio
    async def test_unregistered_participant(self, ledger, config):
        snapshot = await IdentitySnapshotResolver(ledger, config).refresh(STRANGER)

        assert snapshot.is_registered is False
        assert snapshot.is_admin is False
        assert snapshot.role is None

    @pytest.mark.asyncio
    async def test_administrator_detected_case_insensitively(self, ledger, config):
        snapshot = await IdentitySnapshotResolver(ledger, config).refresh(ADMIN.upper().replace("0X", "0x"))
        assert snapshot.is_admin is True

    @pytest.mark.asyncio
    async def test_failure_yields_empty_snapshot(self, flaky_ledger, config):
        """Test that a transient read failure never raises."""
        flaky_ledger.fail("get_participant", CONSUMER)
        snapshot = await IdentitySnapshotResolver(flaky_ledger, config).refresh(CONSUMER)

        assert snapshot.address == CONSUMER
        assert snapshot.is_registered is False
        assert snapshot.role is None
        assert snapshot.organization is None

    @pytest.mark.asyncio
    async def test_event_failure_yields_empty_snapshot(self, flaky_ledger, config):
        flaky_ledger.fail("registration_request_events")
        snapshot = await IdentitySnapshotResolver(flaky_ledger, config).refresh(APPLICANT)

        assert snapshot.is_registered is False
        assert snapshot.last_requested_role is None

    @pytest.mark.asyncio
    async def test_malformed_participant_view_yields_empty_snapshot(self, config):
        """Test that an unparseable raw participant view never raises."""
        client = AsyncMock()
        client.admin.return_value = ADMIN
        client.get_participant_view.return_value = (
            3, CONSUMER, "Consumer", "", "x", "Shop Ltd", "", "",
        )
        client.role_request_logs.return_value = []

        snapshot = await IdentitySnapshotResolver(
            RawViewLedger(client), config,
        ).refresh(CONSUMER)

        assert snapshot.address == CONSUMER
        assert snapshot.is_registered is False
        assert snapshot.organization is None

    @pytest.mark.asyncio
    async def test_invalid_address(self, ledger, config):
        resolver = IdentitySnapshotResolver(ledger, config)
        with pytest.raises(InvalidInputError):
            await resolver.refresh("not-an-address")

    def test_nothing_cached_initially(self, ledger, config):
        resolver = IdentitySnapshotResolver(ledger, config)
        assert resolver.get(CONSUMER) is None
        assert resolver.state(CONSUMER) is SlotState.EMPTY
        assert resolver.refresh_count(CONSUMER) == 0


class TestCoalescing:
    """Test at most one refresh in flight per address."""

    @pytest.mark.asyncio
    async def test_many_triggers_yield_one_follow_up(self, config):
        """Test N triggers during a refresh produce exactly one more refresh."""
        ledger = GatedLedger.from_dict(scenario_snapshot())
        ledger.gate = asyncio.Event()
        resolver = IdentitySnapshotResolver(ledger, config)

        first = resolver.trigger(CONSUMER)
        await asyncio.sleep(0)
        assert resolver.state(CONSUMER) is SlotState.LOADING

        for _ in range(5):
            assert resolver.trigger(CONSUMER) is first

        ledger.gate.set()
        snapshot = await first

        assert resolver.refresh_count(CONSUMER) == 2
        assert ledger.calls["get_participant"] == 2
        assert snapshot.active_role is Role.CONSUMER
        assert resolver.state(CONSUMER) is SlotState.READY

    @pytest.mark.asyncio
    async def test_triggers_during_follow_up_collapse_again(self, config):
        """Test triggers during the follow-up schedule exactly one more refresh."""
        ledger = GatedLedger.from_dict(scenario_snapshot())
        ledger.gate = asyncio.Event()
        resolver = IdentitySnapshotResolver(ledger, config)

        first = resolver.trigger(CONSUMER)
        await asyncio.sleep(0)
        for _ in range(5):
            assert resolver.trigger(CONSUMER) is first

        released, ledger.gate = ledger.gate, asyncio.Event()
        released.set()
        while resolver.refresh_count(CONSUMER) < 1:
            await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert resolver.state(CONSUMER) is SlotState.LOADING
        for _ in range(5):
            assert resolver.trigger(CONSUMER) is first

        ledger.gate.set()
        await first

        assert resolver.refresh_count(CONSUMER) == 3
        assert ledger.calls["get_participant"] == 3
        assert resolver.state(CONSUMER) is SlotState.READY

    @pytest.mark.asyncio
    async def test_re_refresh_reports_loading(self, config):
        """Test a READY slot moves back to LOADING while refetching."""
        ledger = GatedLedger.from_dict(scenario_snapshot())
        resolver = IdentitySnapshotResolver(ledger, config)
        previous = await resolver.refresh(CONSUMER)
        assert resolver.state(CONSUMER) is SlotState.READY

        ledger.gate = asyncio.Event()
        task = resolver.trigger(CONSUMER)
        await asyncio.sleep(0)

        assert resolver.state(CONSUMER) is SlotState.LOADING
        assert resolver.get(CONSUMER) == previous

        ledger.gate.set()
        await task

        assert resolver.state(CONSUMER) is SlotState.READY
        assert resolver.refresh_count(CONSUMER) == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_refresh(self, config):
        """Test the shared refresh survives a cancelled waiter."""
        ledger = GatedLedger.from_dict(scenario_snapshot())
        ledger.gate = asyncio.Event()
        resolver = IdentitySnapshotResolver(ledger, config)

        waiter = asyncio.ensure_future(resolver.refresh(CONSUMER))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert resolver.state(CONSUMER) is SlotState.LOADING
        ledger.gate.set()
        await resolver.join()

        assert resolver.state(CONSUMER) is SlotState.READY
        assert resolver.refresh_count(CONSUMER) == 1
        assert resolver.get(CONSUMER).active_role is Role.CONSUMER

    @pytest.mark.asyncio
    async def test_trigger_after_completion_starts_new_refresh(self, ledger, config):
        resolver = IdentitySnapshotResolver(ledger, config)
        await resolver.refresh(CONSUMER)
        await resolver.refresh(CONSUMER)

        assert resolver.refresh_count(CONSUMER) == 2

    @pytest.mark.asyncio
    async def test_addresses_refresh_independently(self, config):
        ledger = GatedLedger.from_dict(scenario_snapshot())
        ledger.gate = asyncio.Event()
        resolver = IdentitySnapshotResolver(ledger, config)

        consumer_task = resolver.trigger(CONSUMER)
        distributor_task = resolver.trigger(DISTRIBUTOR)
        assert consumer_task is not distributor_task

        ledger.gate.set()
        await asyncio.gather(consumer_task, distributor_task)

        assert resolver.refresh_count(CONSUMER) == 1
        assert resolver.refresh_count(DISTRIBUTOR) == 1

    @pytest.mark.asyncio
    async def test_concurrent_refresh_callers_share_result(self, config):
        ledger = GatedLedger.from_dict(scenario_snapshot())
        ledger.gate = asyncio.Event()
        resolver = IdentitySnapshotResolver(ledger, config)

        waiters = [asyncio.ensure_future(resolver.refresh(CONSUMER)) for _ in range(3)]
        await asyncio.sleep(0)
        ledger.gate.set()
        results = await asyncio.gather(*waiters)

        assert resolver.refresh_count(CONSUMER) == 2
        assert all(r == resolver.get(CONSUMER) for r in results)


class TestTriggerQueue:
    """Test the single inbound trigger channel."""

    @pytest.mark.asyncio
    async def test_dispatcher_refreshes_submitted_addresses(self, ledger, config):
        resolver = IdentitySnapshotResolver(ledger, config)
        await resolver.start()
        try:
            assert resolver.submit(CONSUMER, TriggerSource.NEW_BLOCK)
            assert resolver.submit(APPLICANT, TriggerSource.ROLE_REQUESTED)
            await resolver.join()

            assert resolver.get(CONSUMER).active_role is Role.CONSUMER
            assert resolver.get(APPLICANT).last_requested_role is Role.PROCESSOR
        finally:
            await resolver.close()

    def test_full_queue_drops_trigger(self, ledger):
        resolver = IdentitySnapshotResolver(
            ledger, TraceChainConfig(snapshot_queue_size=1),
        )
        assert resolver.submit(CONSUMER, TriggerSource.ACCOUNT_CHANGED) is True
        assert resolver.submit(CONSUMER, TriggerSource.STATUS_CHANGED) is False

    def test_submit_rejects_invalid_address(self, ledger, config):
        resolver = IdentitySnapshotResolver(ledger, config)
        with pytest.raises(InvalidInputError):
            resolver.submit("0x12")

    @pytest.mark.asyncio
    async def test_close_cancels_in_flight_refresh(self, config):
        ledger = GatedLedger.from_dict(scenario_snapshot())
        ledger.gate = asyncio.Event()
        resolver = IdentitySnapshotResolver(ledger, config)
        await resolver.start()

        task = resolver.trigger(CONSUMER)
        await asyncio.sleep(0)
        await resolver.close()

        assert task.cancelled()
        assert resolver.state(CONSUMER) is SlotState.EMPTY
