"""
FlightSurety Oracles Core Data Models

This module defines the data structures shared by the registry, the event
listener and the response dispatcher. Pydantic models validate everything
that crosses the ledger boundary.

Design Philosophy:
    - Frozen models: identities and requests never mutate in place
    - State transitions return new values
    - Validation happens once, at decode/registration time
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Number of partition buckets oracles are spread across
INDEX_COUNT = 10

# Indexes handed to each oracle at registration
INDEXES_PER_ORACLE = 3


# =============================================================================
# ENUMS
# =============================================================================

class StatusCode(IntEnum):
    """
    Flight status outcomes an oracle can report.

    Values match the FlightSuretyApp contract constants.
    """
    UNKNOWN = 0
    ON_TIME = 10
    LATE_AIRLINE = 20
    LATE_WEATHER = 30
    LATE_TECHNICAL = 40
    LATE_OTHER = 50


class RegistrationState(str, Enum):
    """
    Lifecycle of an oracle identity.

    UNREGISTERED -> PENDING -> REGISTERED | FAILED
    REGISTERED and FAILED are terminal.
    """
    UNREGISTERED = "UNREGISTERED"
    PENDING = "PENDING"
    REGISTERED = "REGISTERED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (RegistrationState.REGISTERED, RegistrationState.FAILED)


_TRANSITIONS = {
    RegistrationState.UNREGISTERED: {RegistrationState.PENDING},
    RegistrationState.PENDING: {RegistrationState.REGISTERED, RegistrationState.FAILED},
    RegistrationState.REGISTERED: set(),
    RegistrationState.FAILED: set(),
}


def validate_indexes(indexes: Any) -> Tuple[int, ...]:
    """
    Check an index assignment: exactly 3 distinct integers in [0, 9].

    Raises:
        ValueError: If the assignment has the wrong shape
    """
    try:
        values = tuple(int(i) for i in indexes)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Index assignment is not a sequence of integers: {indexes!r}") from e

    if len(values) != INDEXES_PER_ORACLE:
        raise ValueError(
            f"Expected {INDEXES_PER_ORACLE} indexes, got {len(values)}: {values}"
        )
    if len(set(values)) != INDEXES_PER_ORACLE:
        raise ValueError(f"Indexes must be distinct: {values}")
    for value in values:
        if not 0 <= value < INDEX_COUNT:
            raise ValueError(f"Index {value} outside [0, {INDEX_COUNT - 1}]")
    return values


# =============================================================================
# ORACLE IDENTITY
# =============================================================================

class OracleIdentity(BaseModel):
    """
    An independently acting responder registered with the ledger.

    Attributes:
        account: Ledger account address (the identity handle)
        indexes: The 3 assigned indexes, set once REGISTERED
        state: Registration state
        error: Failure reason when FAILED
        registered_at: When the ledger confirmed the registration
    """
    model_config = ConfigDict(frozen=True)

    account: str = Field(..., min_length=1)
    indexes: Optional[Tuple[int, ...]] = None
    state: RegistrationState = RegistrationState.UNREGISTERED
    error: Optional[str] = None
    registered_at: Optional[datetime] = None

    @field_validator("indexes")
    @classmethod
    def _check_indexes(cls, value):
        if value is None:
            return value
        return validate_indexes(value)

    @model_validator(mode="after")
    def _check_state(self) -> "OracleIdentity":
        if self.state == RegistrationState.REGISTERED and self.indexes is None:
            raise ValueError("A registered identity must carry its indexes")
        if self.state != RegistrationState.REGISTERED and self.indexes is not None:
            raise ValueError(f"Identity in state {self.state.value} cannot carry indexes")
        return self

    def _transition(self, target: RegistrationState, **changes: Any) -> "OracleIdentity":
        if target not in _TRANSITIONS[self.state]:
            raise ValueError(
                f"Illegal transition for {self.account}: "
                f"{self.state.value} -> {target.value}"
            )
        data = self.model_dump()
        data.update(changes, state=target)
        return OracleIdentity(**data)

    def pending(self) -> "OracleIdentity":
        """Registration submitted, awaiting ledger confirmation."""
        return self._transition(RegistrationState.PENDING)

    def registered(self, indexes) -> "OracleIdentity":
        """Ledger confirmed the registration and assigned indexes."""
        return self._transition(
            RegistrationState.REGISTERED,
            indexes=tuple(indexes),
            registered_at=datetime.utcnow(),
        )

    def failed(self, reason: str) -> "OracleIdentity":
        """Registration could not complete."""
        return self._transition(RegistrationState.FAILED, error=reason)

    @property
    def is_registered(self) -> bool:
        return self.state == RegistrationState.REGISTERED

    def holds_index(self, index: int) -> bool:
        return self.indexes is not None and index in self.indexes

    def __str__(self) -> str:
        return f"{self.account}[{self.state.value}]"


# =============================================================================
# REQUESTS & RESPONSES
# =============================================================================

RequestKey = Tuple[str, str, int, int]


class StatusRequest(BaseModel):
    """
    A flight status request raised by the ledger (OracleRequest event).

    Delivered at-least-once; `key` identifies re-deliveries.

    Attributes:
        index: Partition index selecting which oracles respond
        airline: Airline account address
        flight: Flight identifier (e.g. "A1111")
        timestamp: Departure timestamp (unix seconds)
        block_number: Ledger position the event was emitted at, if known
    """
    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0, lt=INDEX_COUNT)
    airline: str = Field(..., min_length=1)
    flight: str = Field(..., min_length=1)
    timestamp: int = Field(..., ge=0)
    block_number: Optional[int] = Field(default=None, ge=0)

    @property
    def key(self) -> RequestKey:
        """Dedup key: (airline, flight, timestamp, index)."""
        return (self.airline, self.flight, self.timestamp, self.index)

    def __str__(self) -> str:
        return f"{self.airline}/{self.flight}@{self.timestamp}#{self.index}"


class DecodeFailure(BaseModel):
    """A raw event that could not be decoded into a StatusRequest."""
    model_config = ConfigDict(frozen=True)

    reason: str
    raw: Any = None


class StatusResponse(BaseModel):
    """
    One oracle's answer to a StatusRequest.

    Fire-and-forget: the Ledger Gateway resolves consensus.
    """
    model_config = ConfigDict(frozen=True)

    request: StatusRequest
    account: str
    status_code: StatusCode
    submitted_at: datetime = Field(default_factory=datetime.utcnow)


@dataclass
class DispatchReport:
    """
    Outcome of dispatching one request to its matching oracles.

    Attributes:
        request: The dispatched request
        duplicate: True if the request was skipped as a recent re-delivery
        matched: Accounts whose index set contained the request index
        submitted: Responses the ledger accepted
        failures: {account: reason} for submissions that failed
    """
    request: StatusRequest
    duplicate: bool = False
    matched: List[str] = field(default_factory=list)
    submitted: List[StatusResponse] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def submitted_accounts(self) -> List[str]:
        return [response.account for response in self.submitted]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "request": str(self.request),
            "duplicate": self.duplicate,
            "matched": list(self.matched),
            "submitted": {
                r.account: int(r.status_code) for r in self.submitted
            },
            "failures": dict(self.failures),
        }
