"""
FlightSurety Oracles - Decentralized Flight Status Oracle Network

A pool of independent oracle identities registers with the FlightSuretyApp
ledger, each receiving 3 of 10 partition indexes. When the ledger raises an
OracleRequest for an index, every oracle holding that index independently
submits a flight status code; the ledger resolves the status by majority.

Modules:
    - oracles: identity registry, event listener, response dispatcher
    - ledger: Ledger Gateway interface, in-memory and web3 implementations
    - status: status code generator
    - network: the OracleNetwork context tying everything together
    - config: environment-driven configuration
"""

from .config import OracleNetworkConfig
from .exceptions import (
    OracleNetworkError,
    LedgerError,
    LedgerConnectionError,
    RegistrationError,
    SubmissionError,
    DecodeError,
    SubscriptionError,
)
from .models import (
    StatusCode,
    RegistrationState,
    OracleIdentity,
    StatusRequest,
    StatusResponse,
    DecodeFailure,
    DispatchReport,
)
from .network import OracleNetwork, run_oracle_network
from .status import StatusCodeGenerator

__version__ = "1.0.0"
__license__ = "MIT"

__all__ = [
    "OracleNetworkConfig",
    "OracleNetworkError",
    "LedgerError",
    "LedgerConnectionError",
    "RegistrationError",
    "SubmissionError",
    "DecodeError",
    "SubscriptionError",
    "StatusCode",
    "RegistrationState",
    "OracleIdentity",
    "StatusRequest",
    "StatusResponse",
    "DecodeFailure",
    "DispatchReport",
    "OracleNetwork",
    "run_oracle_network",
    "StatusCodeGenerator",
]
