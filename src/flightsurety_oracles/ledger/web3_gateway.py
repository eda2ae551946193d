"""
FlightSurety Web3 Ledger Gateway

Production Ledger Gateway talking to a deployed FlightSuretyApp contract
over Ethereum JSON-RPC.

Requirements:
    - A node exposing unlocked accounts (ganache, hardhat, geth --dev);
      transactions go out through eth_sendTransaction so signing stays
      with the node
    - The truffle build artifact of FlightSuretyApp (for the ABI)
    - The deployed contract address

Event delivery:
    OracleRequest events are polled with eth_getLogs from a block cursor.
    Delivery is at-least-once: a restart from an earlier block replays
    requests, which the dispatcher's dedup cache absorbs.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from ..config import LedgerConfig
from ..exceptions import (
    LedgerConnectionError,
    LedgerError,
    RegistrationError,
    SubmissionError,
)
from .gateway import LedgerGateway


logger = logging.getLogger(__name__)


def load_abi(abi_path: str) -> List[Dict[str, Any]]:
    """
    Load a contract ABI from a truffle artifact or a bare ABI file.

    Raises:
        LedgerError: If the file is missing or has no ABI
    """
    path = Path(abi_path)
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise LedgerError(f"Cannot read contract ABI from {path}: {e}") from e

    abi = data.get("abi") if isinstance(data, dict) else data
    if not isinstance(abi, list):
        raise LedgerError(f"No ABI found in {path}")
    return abi


class Web3LedgerGateway(LedgerGateway):
    """
    FlightSuretyApp client built on web3's asyncio API.

    Example:
        gateway = Web3LedgerGateway(LedgerConfig.from_env())
        await gateway.register_oracle(account, gateway.config.registration_fee_wei)
        indexes = await gateway.get_my_indexes(account)
    """

    # Consecutive polling failures tolerated before the stream is declared dead
    MAX_POLL_FAILURES = 5

    def __init__(
        self,
        config: LedgerConfig,
        abi: Optional[List[Dict[str, Any]]] = None,
        w3: Optional[AsyncWeb3] = None,
    ):
        """
        Initialize the gateway.

        Args:
            config: Ledger endpoint and contract configuration
            abi: Contract ABI (loaded from config.abi_path if not provided)
            w3: Pre-built AsyncWeb3 instance
        """
        self.config = config
        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(config.url))
        self._contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(config.contract_address),
            abi=abi if abi is not None else load_abi(config.abi_path),
        )
        self._owner: Optional[str] = None

    async def _owner_account(self) -> str:
        if self._owner is None:
            accounts = await self.get_accounts()
            if not accounts:
                raise LedgerError("Ledger node manages no accounts")
            self._owner = accounts[0]
        return self._owner

    async def _transact(self, call, tx: Dict[str, Any]) -> Dict[str, Any]:
        """Send a transaction and wait for its receipt; raise on revert."""
        tx.setdefault("gas", self.config.gas_limit)
        tx_hash = await call.transact(tx)
        receipt = await self._w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.config.receipt_timeout_seconds
        )
        if receipt.get("status") != 1:
            raise ContractLogicError(f"Transaction {tx_hash.hex()} reverted")
        return receipt

    # -------------------------------------------------------------------------
    # Oracle surface
    # -------------------------------------------------------------------------

    async def register_oracle(self, account: str, fee_wei: int) -> None:
        """Call registerOracle() from the oracle account with the stake."""
        try:
            await self._transact(
                self._contract.functions.registerOracle(),
                {"from": account, "value": fee_wei},
            )
        except ContractLogicError as e:
            raise RegistrationError(account, f"reverted: {e}") from e
        except TimeExhausted as e:
            raise RegistrationError(account, "receipt timeout") from e
        except Exception as e:
            raise RegistrationError(account, f"connection error: {e}") from e

        logger.debug(f"registerOracle confirmed for {account}")

    async def get_my_indexes(self, account: str) -> Sequence[int]:
        """Call getMyIndexes() as the oracle account."""
        try:
            result = await self._contract.functions.getMyIndexes().call({"from": account})
        except ContractLogicError as e:
            raise RegistrationError(account, f"getMyIndexes reverted: {e}") from e
        except Exception as e:
            raise RegistrationError(account, f"connection error: {e}") from e
        return [int(i) for i in result]

    async def submit_oracle_response(
        self,
        account: str,
        index: int,
        airline: str,
        flight: str,
        timestamp: int,
        status_code: int,
    ) -> None:
        """Call submitOracleResponse() as the oracle account."""
        call = self._contract.functions.submitOracleResponse(
            index,
            AsyncWeb3.to_checksum_address(airline),
            flight,
            timestamp,
            int(status_code),
        )
        try:
            await self._transact(call, {"from": account})
        except ContractLogicError as e:
            raise SubmissionError(account, f"reverted: {e}") from e
        except TimeExhausted as e:
            raise SubmissionError(account, "receipt timeout") from e
        except Exception as e:
            raise SubmissionError(account, f"connection error: {e}") from e

    async def subscribe_requests(self, from_block: int = 0) -> AsyncIterator[Dict[str, Any]]:
        """
        Establish the OracleRequest polling stream.

        Raises:
            LedgerConnectionError: If the node is unreachable
        """
        try:
            connected = await self._w3.is_connected()
            if not connected:
                raise LedgerConnectionError(f"Ledger at {self.config.url} unreachable")
            latest = await self._w3.eth.block_number
        except LedgerConnectionError:
            raise
        except Exception as e:
            raise LedgerConnectionError(f"Ledger at {self.config.url} unreachable: {e}") from e

        logger.info(
            f"OracleRequest subscription opened at block {from_block} "
            f"(chain head {latest})"
        )
        return self._poll_requests(from_block)

    async def _poll_requests(self, from_block: int) -> AsyncIterator[Dict[str, Any]]:
        next_block = from_block
        failures = 0
        event = self._contract.events.OracleRequest()

        while True:
            try:
                latest = await self._w3.eth.block_number
                logs = []
                if latest >= next_block:
                    logs = await event.get_logs(from_block=next_block, to_block=latest)
                failures = 0
            except Exception as e:
                failures += 1
                if failures >= self.MAX_POLL_FAILURES:
                    raise LedgerConnectionError(
                        f"OracleRequest polling failed {failures} times: {e}"
                    ) from e
                logger.warning(f"OracleRequest poll failed ({failures}): {e}")
                await asyncio.sleep(self.config.poll_interval_seconds)
                continue

            for log in logs:
                yield log
            if latest >= next_block:
                next_block = latest + 1

            await asyncio.sleep(self.config.poll_interval_seconds)

    # -------------------------------------------------------------------------
    # Bootstrap surface
    # -------------------------------------------------------------------------

    async def get_accounts(self) -> List[str]:
        try:
            return list(await self._w3.eth.accounts)
        except Exception as e:
            raise LedgerConnectionError(f"Cannot list ledger accounts: {e}") from e

    async def register_airline(self, name: str, account: str, stake_wei: int) -> None:
        try:
            await self._transact(
                self._contract.functions.registerAirline(name, account),
                {"from": account, "value": stake_wei},
            )
        except Exception as e:
            raise LedgerError(f"registerAirline({name}) failed: {e}") from e

    async def register_flight(
        self,
        airline: str,
        airline_name: str,
        flight: str,
        timestamp: int,
    ) -> None:
        try:
            await self._transact(
                self._contract.functions.registerFlight(airline_name, flight, timestamp),
                {"from": airline},
            )
        except Exception as e:
            raise LedgerError(f"registerFlight({flight}) failed: {e}") from e

    async def fetch_flight_status(self, airline: str, flight: str, timestamp: int) -> Optional[int]:
        """Call fetchFlightStatus() from the owner; return the emitted index."""
        owner = await self._owner_account()
        try:
            receipt = await self._transact(
                self._contract.functions.fetchFlightStatus(airline, flight, timestamp),
                {"from": owner},
            )
        except Exception as e:
            raise LedgerError(f"fetchFlightStatus({flight}) failed: {e}") from e

        events = self._contract.events.OracleRequest().process_receipt(receipt)
        if events:
            return int(events[0]["args"]["index"])
        return None

    async def health_check(self) -> bool:
        try:
            return await self._w3.is_connected()
        except Exception:
            return False

    async def close(self) -> None:
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
