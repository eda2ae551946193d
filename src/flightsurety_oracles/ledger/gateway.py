"""
FlightSurety Ledger Gateway Interface

The Ledger Gateway is the external collaborator the oracle core talks to:
it records registrations, emits OracleRequest events, accepts responses
and performs majority aggregation.

Implementations:
    - InMemoryLedgerGateway: contract simulation (tests, local simulation)
    - Web3LedgerGateway: FlightSuretyApp on an Ethereum JSON-RPC node
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence


class LedgerGateway(ABC):
    """
    Abstract interface to the FlightSuretyApp ledger.

    All methods raise LedgerError subclasses on failure:
        - RegistrationError from register_oracle/get_my_indexes
        - SubmissionError from submit_oracle_response
        - LedgerConnectionError when the endpoint is unreachable
    """

    # -------------------------------------------------------------------------
    # Oracle surface (consumed by the core)
    # -------------------------------------------------------------------------

    @abstractmethod
    async def register_oracle(self, account: str, fee_wei: int) -> None:
        """
        Register an oracle account, paying the registration stake.

        Args:
            account: Oracle account address
            fee_wei: Stake sent with the registration
        """
        pass

    @abstractmethod
    async def get_my_indexes(self, account: str) -> Sequence[int]:
        """
        Get the 3 indexes assigned to a registered oracle.

        Args:
            account: Oracle account address

        Returns:
            Sequence of 3 indexes in [0, 9]
        """
        pass

    @abstractmethod
    async def submit_oracle_response(
        self,
        account: str,
        index: int,
        airline: str,
        flight: str,
        timestamp: int,
        status_code: int,
    ) -> None:
        """
        Submit one oracle's status code for an open request.

        Rejected on index mismatch, unknown oracle or closed request.
        """
        pass

    @abstractmethod
    async def subscribe_requests(self, from_block: int = 0) -> AsyncIterator[Dict[str, Any]]:
        """
        Open the OracleRequest event stream.

        Awaiting this establishes the subscription (raising
        LedgerConnectionError if that is impossible); iterating the
        returned object yields raw event payloads.

        Args:
            from_block: First block to deliver events from
        """
        pass

    # -------------------------------------------------------------------------
    # Bootstrap surface
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_accounts(self) -> List[str]:
        """Accounts managed by the ledger node."""
        pass

    @abstractmethod
    async def register_airline(self, name: str, account: str, stake_wei: int) -> None:
        """Register and fund an airline."""
        pass

    @abstractmethod
    async def register_flight(
        self,
        airline: str,
        airline_name: str,
        flight: str,
        timestamp: int,
    ) -> None:
        """Register a flight, sent from the airline's account."""
        pass

    @abstractmethod
    async def fetch_flight_status(self, airline: str, flight: str, timestamp: int) -> Optional[int]:
        """
        Ask the ledger to open a status request (emits OracleRequest).

        Returns:
            The requested index when the ledger reports it, else None
        """
        pass

    async def health_check(self) -> bool:
        """Check if the ledger is reachable."""
        return True

    async def close(self) -> None:
        """Release connections."""
        return None
