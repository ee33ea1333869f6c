# -*- coding: utf-8 -*-
"""
Ledger Query Interface - TraceChain

Read-only facade over the append-only ledger. The provenance and identity
engines depend only on ``LedgerQueryInterface``; two implementations are
provided:

- InMemoryLedger: dictionary-backed ledger loaded from Python objects or
  a JSON snapshot. Used by tests, the CLI, and embedded deployments.
- RawViewLedger: adapter over a node client that returns the ledger's raw
  positional view tuples. Translates tuples into typed models and node
  failures into the TraceChain error taxonomy.

Raw view layouts:
    batch view       (id, producer, name, description, total, features,
                      parent_id, created_at, available)
    batch inputs     [(input_id, quantity), ...]
    participant view (id, address, role, pending_role, status, company,
                      first_name, last_name)
    transfer view    (id, from, to, batch_id, created_at, quantity, status)
    role request log (address, role, block_time)

Example:
    >>> ledger = InMemoryLedger(administrator="0x" + "a" * 40)
    >>> ledger.add_batch(Batch(batch_id=1, producer="0x" + "b" * 40))
    >>> batch = await ledger.get_batch(1)
"""

from __future__ import annotations

import abc
import json
import logging
import re
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union

from tracechain.exceptions import (
    BatchNotFound,
    InvalidInputError,
    MalformedRecordError,
    ParticipantNotFound,
    StaleViewpointError,
    TraceChainException,
    TransientLedgerError,
)
from tracechain.models import (
    ApprovalStatus,
    Batch,
    BatchInput,
    Participant,
    ParticipantRole,
    RegistrationRequestEvent,
    TransferRecord,
    TransferStatus,
    normalize_address,
)

logger = logging.getLogger(__name__)

#: Node errors raised when a read targets a block the node no longer serves.
_STALE_VIEWPOINT_RE = re.compile(r"BlockOutOfRange|block height|eth_call", re.I)

_ZERO_ADDRESS = "0x" + "0" * 40


def classify_ledger_error(
    exc: BaseException,
    operation: str,
) -> TraceChainException:
    """Translate an arbitrary node failure into the TraceChain taxonomy.

    Typed TraceChain errors pass through unchanged. Anything else becomes
    a TransientLedgerError, or StaleViewpointError when the message says
    the node answered from a block it no longer serves.

    Args:
        exc: Exception raised by the node client.
        operation: Ledger operation that failed.

    Returns:
        A TraceChainException suitable for raising ``from exc``.
    """
    if isinstance(exc, TraceChainException):
        return exc
    message = str(exc) or exc.__class__.__name__
    if _STALE_VIEWPOINT_RE.search(message):
        return StaleViewpointError(message, operation=operation)
    return TransientLedgerError(message, operation=operation)


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class LedgerQueryInterface(abc.ABC):
    """Read-only ledger facade consumed by the core engines.

    Every method is a suspend point. Implementations raise
    BatchNotFound/ParticipantNotFound for absent records and
    TransientLedgerError (or a subclass) for infrastructural failures.
    """

    @abc.abstractmethod
    async def get_batch(self, batch_id: int) -> Batch:
        """Return the batch record, including its declared inputs."""

    @abc.abstractmethod
    async def get_participant(self, address: str) -> Participant:
        """Return the participant record for ``address``."""

    @abc.abstractmethod
    async def get_transfers_involving(self, address: str) -> List[TransferRecord]:
        """Return transfers sent or received by ``address``."""

    @abc.abstractmethod
    async def registration_request_events(
        self,
        address: Optional[str] = None,
    ) -> List[RegistrationRequestEvent]:
        """Return role requests, ascending by ledger position.

        Args:
            address: Restrict to one requester; None returns all.
        """

    @abc.abstractmethod
    async def administrator_address(self) -> str:
        """Return the ledger's designated administrator address."""


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryLedger(LedgerQueryInterface):
    """Dictionary-backed ledger.

    Attributes:
        calls: Read counter keyed by operation name.
    """

    def __init__(self, administrator: str = _ZERO_ADDRESS) -> None:
        self._administrator = normalize_address(administrator)
        self._batches: Dict[int, Batch] = {}
        self._participants: Dict[str, Participant] = {}
        self._transfers: List[TransferRecord] = []
        self._requests: List[RegistrationRequestEvent] = []
        self.calls: Counter = Counter()

    # -- population ----------------------------------------------------------

    def add_batch(self, batch: Batch) -> None:
        self._batches[batch.batch_id] = batch

    def add_participant(self, participant: Participant) -> None:
        self._participants[participant.address] = participant

    def add_transfer(self, transfer: TransferRecord) -> None:
        self._transfers.append(transfer)

    def add_registration_event(self, event: RegistrationRequestEvent) -> None:
        self._requests.append(event)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryLedger":
        """Build a ledger from a snapshot dictionary.

        Expected keys: ``administrator``, ``batches``, ``participants``,
        ``transfers``, ``registration_requests``. Every list is optional.
        """
        ledger = cls(administrator=data.get("administrator", _ZERO_ADDRESS))
        for raw in data.get("batches", []):
            ledger.add_batch(Batch.model_validate(raw))
        for raw in data.get("participants", []):
            ledger.add_participant(Participant.model_validate(raw))
        for raw in data.get("transfers", []):
            ledger.add_transfer(TransferRecord.model_validate(raw))
        for raw in data.get("registration_requests", []):
            ledger.add_registration_event(
                RegistrationRequestEvent.model_validate(raw)
            )
        logger.info(
            "InMemoryLedger loaded: %d batches, %d participants, "
            "%d transfers, %d role requests",
            len(ledger._batches), len(ledger._participants),
            len(ledger._transfers), len(ledger._requests),
        )
        return ledger

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "InMemoryLedger":
        """Load a ledger snapshot written as JSON."""
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    # -- reads ---------------------------------------------------------------

    async def get_batch(self, batch_id: int) -> Batch:
        self.calls["get_batch"] += 1
        batch = self._batches.get(batch_id)
        if batch is None:
            raise BatchNotFound(batch_id)
        return batch

    async def get_participant(self, address: str) -> Participant:
        self.calls["get_participant"] += 1
        address = normalize_address(address)
        participant = self._participants.get(address)
        if participant is None:
            raise ParticipantNotFound(address)
        return participant

    async def get_transfers_involving(self, address: str) -> List[TransferRecord]:
        self.calls["get_transfers_involving"] += 1
        address = normalize_address(address)
        return [
            t for t in self._transfers
            if t.sender == address or t.recipient == address
        ]

    async def registration_request_events(
        self,
        address: Optional[str] = None,
    ) -> List[RegistrationRequestEvent]:
        self.calls["registration_request_events"] += 1
        if address is None:
            return list(self._requests)
        address = normalize_address(address)
        return [e for e in self._requests if e.address == address]

    async def administrator_address(self) -> str:
        self.calls["administrator_address"] += 1
        return self._administrator


# ---------------------------------------------------------------------------
# Raw view adapter
# ---------------------------------------------------------------------------


class RawLedgerClient(Protocol):
    """Node client returning the ledger's positional view tuples."""

    async def get_batch_view(self, batch_id: int) -> Sequence[Any]: ...

    async def get_batch_inputs(self, batch_id: int) -> Sequence[Sequence[Any]]: ...

    async def get_participant_view(self, address: str) -> Sequence[Any]: ...

    async def get_transfer_ids(self, address: str) -> Sequence[Any]: ...

    async def get_transfer_view(self, transfer_id: int) -> Sequence[Any]: ...

    async def role_request_logs(
        self, address: Optional[str],
    ) -> Sequence[Sequence[Any]]: ...

    async def admin(self) -> str: ...


def _opt_str(value: Any) -> Optional[str]:
    return str(value) if value else None


def parse_batch_view(
    view: Sequence[Any],
    inputs: Iterable[Sequence[Any]] = (),
) -> Batch:
    """Translate a raw batch view and its input pairs into a Batch."""
    return Batch(
        batch_id=int(view[0]),
        producer=str(view[1]),
        name=str(view[2] or ""),
        description=str(view[3] or ""),
        total_quantity=int(view[4] or 0),
        features=str(view[5] or ""),
        created_at=int(view[7] or 0),
        available_quantity=int(view[8] or 0) if len(view) > 8 else 0,
        inputs=tuple(
            BatchInput(batch_id=int(pair[0]), quantity=int(pair[1]))
            for pair in inputs
        ),
    )


def parse_participant_view(view: Sequence[Any]) -> Participant:
    """Translate a raw participant view into a Participant."""
    return Participant(
        address=str(view[1]),
        role=ParticipantRole.parse(str(view[2] or "")),
        pending_role=ParticipantRole.parse(str(view[3] or "")),
        status=ApprovalStatus.from_code(int(view[4])),
        organization=_opt_str(view[5]) if len(view) > 5 else None,
        first_name=_opt_str(view[6]) if len(view) > 6 else None,
        last_name=_opt_str(view[7]) if len(view) > 7 else None,
    )


def parse_transfer_view(view: Sequence[Any]) -> TransferRecord:
    """Translate a raw transfer view into a TransferRecord."""
    return TransferRecord(
        transfer_id=int(view[0]),
        sender=str(view[1]),
        recipient=str(view[2]),
        batch_id=int(view[3]),
        created_at=int(view[4] or 0),
        quantity=int(view[5] or 0),
        status=TransferStatus.from_code(int(view[6])),
    )


def _translate(parse: Any, operation: str, record: str, *args: Any) -> Any:
    """Run a view parser, raising MalformedRecordError on bad input."""
    try:
        return parse(*args)
    except (InvalidInputError, ValueError, TypeError, IndexError) as exc:
        raise MalformedRecordError(
            f"Malformed {record} view: {exc}",
            operation=operation,
            record=record,
        ) from exc


def _parse_request_log(log: Sequence[Any]) -> RegistrationRequestEvent:
    return RegistrationRequestEvent(
        address=str(log[0]),
        requested_role=ParticipantRole.parse(str(log[1] or "")),
        block_time=int(log[2]) if log[2] is not None else None,
    )


class RawViewLedger(LedgerQueryInterface):
    """LedgerQueryInterface over a RawLedgerClient.

    A zero batch id or zero participant address in a view means the record
    does not exist. Client failures are classified via classify_ledger_error.
    """

    def __init__(self, client: RawLedgerClient) -> None:
        self._client = client
        logger.info("RawViewLedger initialized")

    async def get_batch(self, batch_id: int) -> Batch:
        try:
            view = await self._client.get_batch_view(batch_id)
        except Exception as exc:
            raise classify_ledger_error(exc, "get_batch") from exc
        if not view or _translate(int, "get_batch", "batch", view[0]) == 0:
            raise BatchNotFound(batch_id)
        try:
            inputs = await self._client.get_batch_inputs(batch_id)
        except Exception as exc:
            raise classify_ledger_error(exc, "get_batch") from exc
        return _translate(parse_batch_view, "get_batch", "batch", view, inputs)

    async def get_participant(self, address: str) -> Participant:
        address = normalize_address(address)
        try:
            view = await self._client.get_participant_view(address)
        except Exception as exc:
            raise classify_ledger_error(exc, "get_participant") from exc
        if not view or str(view[1]).lower() == _ZERO_ADDRESS:
            raise ParticipantNotFound(address)
        return _translate(
            parse_participant_view, "get_participant", "participant", view,
        )

    async def get_transfers_involving(self, address: str) -> List[TransferRecord]:
        address = normalize_address(address)
        try:
            ids = await self._client.get_transfer_ids(address)
            views = [
                await self._client.get_transfer_view(int(tid)) for tid in ids
            ]
        except Exception as exc:
            raise classify_ledger_error(exc, "get_transfers_involving") from exc
        return [
            _translate(
                parse_transfer_view, "get_transfers_involving", "transfer", view,
            )
            for view in views
        ]

    async def registration_request_events(
        self,
        address: Optional[str] = None,
    ) -> List[RegistrationRequestEvent]:
        if address is not None:
            address = normalize_address(address)
        try:
            logs = await self._client.role_request_logs(address)
        except Exception as exc:
            raise classify_ledger_error(
                exc, "registration_request_events",
            ) from exc
        return [
            _translate(
                _parse_request_log, "registration_request_events",
                "role request", log,
            )
            for log in logs
        ]

    async def administrator_address(self) -> str:
        try:
            admin = await self._client.admin()
        except Exception as exc:
            raise classify_ledger_error(exc, "administrator_address") from exc
        return _translate(
            normalize_address, "administrator_address", "administrator",
            str(admin),
        )


__all__ = [
    "LedgerQueryInterface",
    "InMemoryLedger",
    "RawLedgerClient",
    "RawViewLedger",
    "classify_ledger_error",
    "parse_batch_view",
    "parse_participant_view",
    "parse_transfer_view",
]
