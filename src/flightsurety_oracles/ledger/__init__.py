"""
FlightSurety Ledger Package

The Ledger Gateway - the external collaborator that records registrations,
emits OracleRequest events and aggregates oracle responses.
"""

from .gateway import LedgerGateway
from .memory import InMemoryLedgerGateway
from .web3_gateway import Web3LedgerGateway, load_abi

__all__ = [
    "LedgerGateway",
    "InMemoryLedgerGateway",
    "Web3LedgerGateway",
    "load_abi",
]
