"""
FlightSurety In-Memory Ledger

A simulation of the FlightSuretyApp contract for development and testing.
It reproduces the behaviour the oracle core depends on:

    - registerOracle: fixed 1 ether stake, 3 distinct pseudo-random indexes
    - fetchFlightStatus: opens a request for a random index, emits OracleRequest
    - submitOracleResponse: rejects index mismatch, unknown oracle, closed request
    - majority: once MIN_RESPONSES oracles agree on a code, the request closes
      and the flight status is recorded

Failure scenarios can be injected per account (registration/submission
failures, delays) or globally (connection down, subscription refused).

Example:
    ledger = InMemoryLedgerGateway(account_count=21, seed=7)
    await ledger.register_oracle(ledger.accounts[1], ledger.registration_fee_wei)
    indexes = await ledger.get_my_indexes(ledger.accounts[1])
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set, Tuple

from ..config import WEI_PER_ETHER
from ..exceptions import (
    LedgerConnectionError,
    LedgerError,
    RegistrationError,
    SubmissionError,
)
from ..models import INDEX_COUNT, INDEXES_PER_ORACLE, StatusCode
from .gateway import LedgerGateway


logger = logging.getLogger(__name__)


_CLOSED = object()

_VALID_CODES = {int(code) for code in StatusCode}


@dataclass
class ResponseTally:
    """Responses collected for one open request."""
    requester: str
    is_open: bool = True
    responders: Set[str] = field(default_factory=set)
    responses: Dict[int, List[str]] = field(default_factory=dict)


class InMemoryLedgerGateway(LedgerGateway):
    """
    In-process FlightSuretyApp simulation.

    Events are kept in an append-only log; each one occupies its own
    block so subscriptions can replay from any block.
    """

    REGISTRATION_FEE_WEI = 1 * WEI_PER_ETHER
    AIRLINE_STAKE_WEI = 10 * WEI_PER_ETHER
    MIN_RESPONSES = 3

    def __init__(
        self,
        accounts: Optional[Sequence[str]] = None,
        account_count: int = 21,
        seed: Optional[int] = None,
        latency_seconds: float = 0.0,
        registration_fee_wei: Optional[int] = None,
    ):
        """
        Initialize the simulated ledger.

        Args:
            accounts: Node-managed accounts (generated if not provided)
            account_count: How many accounts to generate
            seed: Seed for index assignment and request index selection
            latency_seconds: Simulated latency for every call
            registration_fee_wei: Override the oracle registration fee
        """
        if accounts is None:
            accounts = [f"0x{i:040x}" for i in range(1, account_count + 1)]
        self._accounts = list(accounts)
        self._rng = random.Random(seed)
        self._latency = latency_seconds
        self.registration_fee_wei = registration_fee_wei or self.REGISTRATION_FEE_WEI

        # Contract state
        self._oracles: Dict[str, Tuple[int, ...]] = {}
        self._airlines: Dict[str, str] = {}
        self._flights: Set[Tuple[str, str, int]] = set()
        self._requests: Dict[Tuple[int, str, str, int], ResponseTally] = {}
        self.flight_statuses: Dict[Tuple[str, str, int], int] = {}

        # Event log: (block_number, payload)
        self._events: List[Tuple[int, Any]] = []
        self._block_number = 0
        self._subscribers: List[asyncio.Queue] = []

        # Observability for tests
        self.register_calls: Dict[str, int] = {}
        self.submissions: List[Dict[str, Any]] = []
        self.duplicate_submissions = 0

        # Failure injection
        self._connection_down = False
        self._refuse_subscriptions = False
        self._preset_indexes: Dict[str, Tuple[int, ...]] = {}
        self._failing_registrations: Dict[str, str] = {}
        self._failing_submissions: Dict[str, str] = {}
        self._registration_delays: Dict[str, float] = {}
        self._submission_delays: Dict[str, float] = {}
        self._next_request_index: Optional[int] = None

    # -------------------------------------------------------------------------
    # Failure injection / test helpers
    # -------------------------------------------------------------------------

    @property
    def accounts(self) -> List[str]:
        return list(self._accounts)

    @property
    def block_number(self) -> int:
        return self._block_number

    def set_connection_down(self, down: bool) -> None:
        """Make every call fail with LedgerConnectionError."""
        self._connection_down = down

    def set_refuse_subscriptions(self, refuse: bool) -> None:
        """Make subscribe_requests fail."""
        self._refuse_subscriptions = refuse

    def preset_indexes(self, account: str, indexes: Sequence[int]) -> None:
        """Assign fixed indexes to an account (stored unvalidated)."""
        self._preset_indexes[account] = tuple(indexes)

    def fail_registration(self, account: str, reason: str = "transaction reverted") -> None:
        self._failing_registrations[account] = reason

    def fail_submissions(self, account: str, reason: str = "transaction reverted") -> None:
        self._failing_submissions[account] = reason

    def delay_registration(self, account: str, seconds: float) -> None:
        self._registration_delays[account] = seconds

    def delay_submissions(self, account: str, seconds: float) -> None:
        self._submission_delays[account] = seconds

    def set_next_request_index(self, index: int) -> None:
        """Force the index of the next fetch_flight_status request."""
        self._next_request_index = index

    def is_registered_oracle(self, account: str) -> bool:
        return account in self._oracles

    def is_request_open(self, index: int, airline: str, flight: str, timestamp: int) -> bool:
        tally = self._requests.get((index, airline, flight, timestamp))
        return tally is not None and tally.is_open

    def submissions_for(self, airline: str, flight: str, timestamp: int) -> List[Dict[str, Any]]:
        return [
            s for s in self.submissions
            if (s["airline"], s["flight"], s["timestamp"]) == (airline, flight, timestamp)
        ]

    def emit_request(self, index: int, airline: str, flight: str, timestamp: int) -> int:
        """
        Open a request and emit its OracleRequest event directly.

        Returns:
            Block number of the emitted event
        """
        self._requests[(index, airline, flight, timestamp)] = ResponseTally(requester=airline)
        return self._emit({
            "event": "OracleRequest",
            "args": {
                "index": index,
                "airline": airline,
                "flight": flight,
                "timestamp": timestamp,
            },
        })

    def emit_raw_event(self, payload: Any) -> int:
        """Emit an arbitrary payload on the OracleRequest stream."""
        return self._emit(payload)

    def break_subscriptions(self, error: Optional[Exception] = None) -> None:
        """Kill every open stream with an error."""
        exc = error or LedgerConnectionError("Event stream interrupted")
        for queue in list(self._subscribers):
            queue.put_nowait(exc)

    def _emit(self, payload: Any) -> int:
        self._block_number += 1
        if isinstance(payload, dict) and "args" in payload:
            payload = dict(payload, blockNumber=self._block_number)
        self._events.append((self._block_number, payload))
        for queue in list(self._subscribers):
            queue.put_nowait(payload)
        return self._block_number

    async def _call(self, delay: float = 0.0) -> None:
        await asyncio.sleep(self._latency + delay)
        if self._connection_down:
            raise LedgerConnectionError("Ledger endpoint unreachable (simulated)")

    # -------------------------------------------------------------------------
    # Oracle surface
    # -------------------------------------------------------------------------

    async def register_oracle(self, account: str, fee_wei: int) -> None:
        """Simulate registerOracle()."""
        self.register_calls[account] = self.register_calls.get(account, 0) + 1
        await self._call(self._registration_delays.get(account, 0.0))

        if account in self._failing_registrations:
            raise RegistrationError(account, self._failing_registrations[account])
        if fee_wei < self.registration_fee_wei:
            raise RegistrationError(account, "insufficient stake")
        if account in self._oracles:
            raise RegistrationError(account, "already registered")

        indexes = self._preset_indexes.get(account)
        if indexes is None:
            indexes = tuple(self._rng.sample(range(INDEX_COUNT), INDEXES_PER_ORACLE))
        self._oracles[account] = indexes
        logger.debug(f"Simulated ledger registered oracle {account}: {indexes}")

    async def get_my_indexes(self, account: str) -> Sequence[int]:
        """Simulate getMyIndexes()."""
        await self._call()
        if account not in self._oracles:
            raise RegistrationError(account, "not registered as an oracle")
        return list(self._oracles[account])

    async def submit_oracle_response(
        self,
        account: str,
        index: int,
        airline: str,
        flight: str,
        timestamp: int,
        status_code: int,
    ) -> None:
        """Simulate submitOracleResponse() and majority resolution."""
        await self._call(self._submission_delays.get(account, 0.0))

        if account in self._failing_submissions:
            raise SubmissionError(account, self._failing_submissions[account])

        indexes = self._oracles.get(account)
        if indexes is None:
            raise SubmissionError(account, "unknown oracle")
        if index not in indexes:
            raise SubmissionError(account, "index does not match oracle request")
        if int(status_code) not in _VALID_CODES:
            raise SubmissionError(account, f"invalid status code {status_code}")

        tally = self._requests.get((index, airline, flight, timestamp))
        if tally is None or not tally.is_open:
            raise SubmissionError(account, "request is closed or unknown")

        if account in tally.responders:
            self.duplicate_submissions += 1
            logger.debug(f"Simulated ledger ignored duplicate response from {account}")
            return

        code = int(status_code)
        tally.responders.add(account)
        tally.responses.setdefault(code, []).append(account)
        self.submissions.append({
            "account": account,
            "index": index,
            "airline": airline,
            "flight": flight,
            "timestamp": timestamp,
            "status_code": code,
        })

        if len(tally.responses[code]) >= self.MIN_RESPONSES:
            tally.is_open = False
            self.flight_statuses[(airline, flight, timestamp)] = code
            self._emit({
                "event": "FlightStatusInfo",
                "airline": airline,
                "flight": flight,
                "timestamp": timestamp,
                "status": code,
            })
            logger.info(
                f"Simulated ledger resolved {airline}/{flight}@{timestamp}: status {code}"
            )

    async def subscribe_requests(self, from_block: int = 0) -> AsyncIterator[Dict[str, Any]]:
        """Open a stream replaying events from `from_block` onwards."""
        await self._call()
        if self._refuse_subscriptions:
            raise LedgerConnectionError("Subscription refused (simulated)")

        backlog = [
            payload for block, payload in self._events
            if block >= from_block and self._is_request_stream(payload)
        ]
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return self._stream(queue, backlog)

    @staticmethod
    def _is_request_stream(payload: Any) -> bool:
        return not (isinstance(payload, dict) and payload.get("event") == "FlightStatusInfo")

    async def _stream(self, queue: asyncio.Queue, backlog: List[Any]) -> AsyncIterator[Any]:
        try:
            for payload in backlog:
                yield payload
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                if isinstance(item, Exception):
                    raise item
                if self._is_request_stream(item):
                    yield item
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    # -------------------------------------------------------------------------
    # Bootstrap surface
    # -------------------------------------------------------------------------

    async def get_accounts(self) -> List[str]:
        await self._call()
        return list(self._accounts)

    async def register_airline(self, name: str, account: str, stake_wei: int) -> None:
        await self._call()
        if stake_wei < self.AIRLINE_STAKE_WEI:
            raise LedgerError(f"Airline {name} stake too low: {stake_wei} wei")
        if account in self._airlines:
            raise LedgerError(f"Airline {account} already registered")
        self._airlines[account] = name

    async def register_flight(
        self,
        airline: str,
        airline_name: str,
        flight: str,
        timestamp: int,
    ) -> None:
        await self._call()
        if self._airlines.get(airline) != airline_name:
            raise LedgerError(f"{airline} is not the registered owner of airline {airline_name}")
        self._flights.add((airline, flight, timestamp))

    async def fetch_flight_status(self, airline: str, flight: str, timestamp: int) -> Optional[int]:
        """
        Simulate fetchFlightStatus(): open a request for a random index.

        Returns:
            The index oracles must hold to answer
        """
        await self._call()
        if self._next_request_index is not None:
            index, self._next_request_index = self._next_request_index, None
        else:
            index = self._rng.randrange(INDEX_COUNT)
        self.emit_request(index, airline, flight, timestamp)
        return index

    async def health_check(self) -> bool:
        return not self._connection_down

    async def close(self) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(_CLOSED)
