# -*- coding: utf-8 -*-
"""Pytest configuration and shared fixtures."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from tracechain.config import TraceChainConfig, reset_config
from tracechain.exceptions import TransientLedgerError
from tracechain.ledger import InMemoryLedger, LedgerQueryInterface
from tracechain.models import (
    Batch,
    Participant,
    RegistrationRequestEvent,
    TransferRecord,
)

ADMIN = "0x" + "a" * 40
CONSUMER = "0x" + "1" * 40
DISTRIBUTOR = "0x" + "2" * 40
PRODUCER = "0x" + "3" * 40
PROCESSOR = "0x" + "4" * 40
APPLICANT = "0x" + "5" * 40
STRANGER = "0x" + "6" * 40


def scenario_snapshot() -> Dict[str, Any]:
    """Ledger snapshot used across the suite.

    batch 10 (Consumer) <- batch 7 qty 2 (Distributor) <- batch 3 qty 5 (Producer)
    batch 20 (Processor) <- batch 3 qty 1, batch 4 qty 2 (both Producer)
    """
    return {
        "administrator": ADMIN.upper().replace("0X", "0x"),
        "batches": [
            {
                "batch_id": 3,
                "producer": PRODUCER,
                "name": "Raw cocoa",
                "total_quantity": 100,
                "available_quantity": 94,
                "created_at": 100,
                "features": json.dumps({"origin": "Ghana", "company": "Hidden"}),
            },
            {
                "batch_id": 4,
                "producer": PRODUCER,
                "name": "Raw sugar",
                "total_quantity": 50,
                "created_at": 120,
            },
            {
                "batch_id": 7,
                "producer": DISTRIBUTOR,
                "name": "Cocoa crates",
                "total_quantity": 10,
                "inputs": [{"batch_id": 3, "quantity": 5}],
                "created_at": 400,
            },
            {
                "batch_id": 10,
                "producer": CONSUMER,
                "name": "Chocolate bar",
                "total_quantity": 2,
                "inputs": [{"batch_id": 7, "quantity": 2}],
                "created_at": 600,
            },
            {
                "batch_id": 20,
                "producer": PROCESSOR,
                "name": "Cocoa paste",
                "total_quantity": 3,
                "inputs": [
                    {"batch_id": 3, "quantity": 1},
                    {"batch_id": 4, "quantity": 2},
                ],
                "created_at": 700,
            },
        ],
        "participants": [
            {"address": CONSUMER, "role": "Consumer", "status": "Approved",
             "organization": "Shop Ltd", "first_name": "Ana", "last_name": "Ruiz"},
            {"address": DISTRIBUTOR, "role": "Distributor", "status": "Approved",
             "organization": "Freight Co"},
            {"address": PRODUCER, "role": "Producer", "status": "Approved",
             "organization": "Farm Coop"},
            {"address": PROCESSOR, "role": "Processor", "status": "Approved",
             "organization": "Mill Inc"},
            {"address": APPLICANT, "pending_role": "Processor", "status": "Pending",
             "organization": "New Mill"},
        ],
        "transfers": [
            {"transfer_id": 1, "sender": PRODUCER, "recipient": DISTRIBUTOR,
             "batch_id": 3, "quantity": 5, "status": "Accepted", "created_at": 300},
            {"transfer_id": 2, "sender": DISTRIBUTOR, "recipient": CONSUMER,
             "batch_id": 7, "quantity": 2, "status": "Accepted", "created_at": 500},
            {"transfer_id": 3, "sender": PRODUCER, "recipient": PROCESSOR,
             "batch_id": 3, "quantity": 1, "status": "Accepted", "created_at": 650},
            {"transfer_id": 4, "sender": PRODUCER, "recipient": PROCESSOR,
             "batch_id": 4, "quantity": 2, "status": "Rejected", "created_at": 660},
        ],
        "registration_requests": [
            {"address": APPLICANT, "requested_role": "Distributor", "block_time": 800},
            {"address": APPLICANT, "requested_role": "Processor", "block_time": 900},
        ],
    }


class FlakyLedger(LedgerQueryInterface):
    """Wraps a ledger and raises injected failures for chosen reads.

    ``fail("get_participant", PRODUCER)`` makes every participant read of
    PRODUCER raise; a key of None fails the operation for every argument.
    """

    def __init__(self, inner: LedgerQueryInterface) -> None:
        self.inner = inner
        self.failures: Dict[Tuple[str, Any], Exception] = {}

    def fail(
        self,
        operation: str,
        key: Any = None,
        exc: Optional[Exception] = None,
    ) -> None:
        if isinstance(key, str):
            key = key.lower()
        self.failures[(operation, key)] = exc or TransientLedgerError(
            "node unavailable", operation=operation,
        )

    def _check(self, operation: str, key: Any) -> None:
        if isinstance(key, str):
            key = key.lower()
        exc = self.failures.get((operation, key)) or self.failures.get((operation, None))
        if exc is not None:
            raise exc

    async def get_batch(self, batch_id: int) -> Batch:
        self._check("get_batch", batch_id)
        return await self.inner.get_batch(batch_id)

    async def get_participant(self, address: str) -> Participant:
        self._check("get_participant", address)
        return await self.inner.get_participant(address)

    async def get_transfers_involving(self, address: str) -> List[TransferRecord]:
        self._check("get_transfers_involving", address)
        return await self.inner.get_transfers_involving(address)

    async def registration_request_events(
        self,
        address: Optional[str] = None,
    ) -> List[RegistrationRequestEvent]:
        self._check("registration_request_events", address)
        return await self.inner.registration_request_events(address)

    async def administrator_address(self) -> str:
        self._check("administrator_address", None)
        return await self.inner.administrator_address()


@pytest.fixture(autouse=True)
def _reset_config():
    """Keep the config singleton from leaking between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    return TraceChainConfig()


@pytest.fixture
def sequential_config():
    return TraceChainConfig(enrich_concurrently=False)


@pytest.fixture
def snapshot_data():
    return scenario_snapshot()


@pytest.fixture
def ledger(snapshot_data):
    return InMemoryLedger.from_dict(snapshot_data)


@pytest.fixture
def flaky_ledger(ledger):
    return FlakyLedger(ledger)


@pytest.fixture
def ledger_file(tmp_path: Path, snapshot_data) -> Path:
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps(snapshot_data), encoding="utf-8")
    return path
