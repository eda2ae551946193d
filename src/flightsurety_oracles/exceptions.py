"""
FlightSurety Oracles Exceptions

Every error raised by the oracle network derives from OracleNetworkError.
Ledger call failures (registration, submission, connectivity) share the
LedgerError base so callers can isolate them per identity.
"""

from __future__ import annotations

from typing import Any, Optional


class OracleNetworkError(Exception):
    """Base class for oracle network errors."""


class LedgerError(OracleNetworkError):
    """A call against the Ledger Gateway failed."""


class LedgerConnectionError(LedgerError):
    """The ledger endpoint could not be reached."""


class RegistrationError(LedgerError):
    """
    Oracle registration was rejected or could not complete.

    Typical reasons: insufficient stake, already registered,
    connection failure, invalid index assignment.
    """

    def __init__(self, account: str, reason: str):
        super().__init__(f"Registration of {account} failed: {reason}")
        self.account = account
        self.reason = reason


class SubmissionError(LedgerError):
    """An oracle response was reverted or rejected by the ledger."""

    def __init__(self, account: str, reason: str):
        super().__init__(f"Submission from {account} failed: {reason}")
        self.account = account
        self.reason = reason


class DecodeError(OracleNetworkError):
    """A raw ledger event could not be decoded into a StatusRequest."""

    def __init__(self, reason: str, raw: Optional[Any] = None):
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class SubscriptionError(OracleNetworkError):
    """
    The request event subscription could not be established or died.

    This is fatal: the process should exit and rely on external
    supervision to restart it.
    """
