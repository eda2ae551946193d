"""
FlightSurety Oracle Network - Main Orchestrator

This module ties the oracle core together around one explicit context
object, OracleNetwork, which holds the gateway handle, the identity
registry, the configuration, and the request queue between listener and
dispatcher.

Lifecycle:
    1. bootstrap()         - register the demo airline and flights (optional)
    2. register_oracles()  - register the pool, then close registration
    3. start()             - open the OracleRequest subscription (fatal on
                             failure) and start the dispatcher
    4. run_forever()       - block until the subscription dies
    5. close()             - stop everything and release the gateway

    Ledger --OracleRequest--> EventListener --Queue--> ResponseDispatcher
                                                            |
                                     IdentityRegistry <-----+----> Ledger
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from .config import DispatchConfig, OracleNetworkConfig, RedisConfig
from .exceptions import LedgerError
from .ledger.gateway import LedgerGateway
from .models import OracleIdentity, StatusRequest
from .oracles.dedup import RecentRequestCache, RedisRequestCache, RequestCache
from .oracles.dispatcher import ResponseDispatcher
from .oracles.listener import EventListener
from .oracles.registry import IdentityRegistry
from .status import StatusCodeGenerator


logger = logging.getLogger(__name__)


def build_request_cache(dispatch: DispatchConfig, redis_config: RedisConfig) -> RequestCache:
    """Create the dedup cache selected by configuration."""
    if dispatch.dedup_backend == "redis":
        return RedisRequestCache(
            redis_url=redis_config.url,
            ttl_seconds=dispatch.dedup_ttl_seconds,
            key_prefix=redis_config.key_prefix,
            max_connections=redis_config.max_connections,
            socket_timeout=redis_config.socket_timeout,
            operation_timeout_seconds=redis_config.operation_timeout,
            cooldown_seconds=redis_config.cooldown_seconds,
        )
    if dispatch.dedup_backend != "memory":
        raise ValueError(f"Unknown dedup backend: {dispatch.dedup_backend}")
    return RecentRequestCache(
        ttl_seconds=dispatch.dedup_ttl_seconds,
        max_entries=dispatch.dedup_max_entries,
    )


class OracleNetwork:
    """
    The oracle network context.

    Example:
        network = OracleNetwork(gateway, OracleNetworkConfig.from_env())
        await network.bootstrap()
        await network.register_oracles()
        await network.start()
        await network.run_forever()
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        config: Optional[OracleNetworkConfig] = None,
        generator: Optional[StatusCodeGenerator] = None,
        cache: Optional[RequestCache] = None,
    ):
        """
        Initialize the network.

        Args:
            gateway: Ledger Gateway shared by every component
            config: Network configuration (defaults if not provided)
            generator: Status code generator (uniform random by default)
            cache: Dedup cache (built from config if not provided)
        """
        self.config = config or OracleNetworkConfig()
        self.gateway = gateway

        self.registry = IdentityRegistry(
            gateway,
            registration_fee_wei=self.config.ledger.registration_fee_wei,
            timeout_seconds=self.config.registration.timeout_seconds,
            concurrency=self.config.registration.concurrency,
        )
        self.queue: "asyncio.Queue[StatusRequest]" = asyncio.Queue(
            maxsize=self.config.dispatch.queue_maxsize
        )
        self.listener = EventListener(
            gateway,
            self.queue,
            open_timeout_seconds=self.config.ledger.call_timeout_seconds,
        )
        self.cache = cache if cache is not None else build_request_cache(self.config.dispatch, self.config.redis)
        self.dispatcher = ResponseDispatcher(
            self.registry,
            gateway,
            generator=generator,
            cache=self.cache,
            submission_timeout_seconds=self.config.dispatch.submission_timeout_seconds,
            max_concurrent_dispatches=self.config.dispatch.max_concurrent_dispatches,
        )

        self.airline: Optional[str] = None
        self.flights: List[Tuple[str, int]] = []

    async def oracle_accounts(self) -> List[str]:
        """Accounts to register as oracles, from config or the ledger node."""
        registration = self.config.registration
        if registration.accounts:
            accounts = list(registration.accounts)
        else:
            accounts = (await self.gateway.get_accounts())[registration.account_offset:]
        if registration.max_oracles is not None:
            accounts = accounts[:registration.max_oracles]
        return accounts

    async def bootstrap(self) -> Optional[str]:
        """
        Register the demo airline and its flights.

        Failures are logged and do not stop the network.

        Returns:
            The airline account, or None if bootstrap is disabled
        """
        bootstrap = self.config.bootstrap
        if not bootstrap.enabled:
            return None

        accounts = await self.gateway.get_accounts()
        if not accounts:
            logger.warning("Ledger has no accounts, skipping bootstrap")
            return None
        self.airline = accounts[0]

        try:
            await self.gateway.register_airline(
                bootstrap.airline_name,
                self.airline,
                self.config.ledger.airline_stake_wei,
            )
            logger.info(f"Airline {bootstrap.airline_name} registered as {self.airline}")
        except LedgerError as e:
            logger.warning(f"Airline registration failed: {e}")

        for flight, timestamp in bootstrap.flights:
            try:
                await self.gateway.register_flight(
                    self.airline, bootstrap.airline_name, flight, timestamp
                )
                self.flights.append((flight, timestamp))
                logger.info(f"Flight {flight}@{timestamp} registered")
            except LedgerError as e:
                logger.warning(f"Flight {flight} registration failed: {e}")

        return self.airline

    async def register_oracles(self, accounts: Optional[List[str]] = None) -> List[OracleIdentity]:
        """Register the oracle pool and close the registration phase."""
        if accounts is None:
            accounts = await self.oracle_accounts()
        logger.info(f"Registering {len(accounts)} oracles")

        identities = await self.registry.register_all(accounts)
        self.registry.close_registration()
        return identities

    async def start(self, from_block: Optional[int] = None) -> None:
        """
        Open the request subscription and start dispatching.

        Raises:
            SubscriptionError: If the subscription cannot be established
        """
        if from_block is None:
            from_block = self.config.ledger.from_block
        await self.listener.subscribe(from_block)
        self.dispatcher.start(self.queue)

    async def request_flight_status(
        self,
        flight: str,
        timestamp: int,
        airline: Optional[str] = None,
    ) -> Optional[int]:
        """Ask the ledger to open a status request for a flight."""
        airline = airline or self.airline
        if airline is None:
            raise ValueError("No airline given and none bootstrapped")
        index = await self.gateway.fetch_flight_status(airline, flight, timestamp)
        logger.info(f"Requested status of {flight}@{timestamp} (index {index})")
        return index

    async def wait_until_idle(self, min_received: int = 0, timeout: float = 5.0) -> None:
        """
        Wait until the listener has seen `min_received` events and every
        queued or parked request has been dispatched.
        """
        async def _settle() -> None:
            while self.listener.received < min_received or self.listener.pending:
                await asyncio.sleep(0.01)
            await self.dispatcher.drain()

        await asyncio.wait_for(_settle(), timeout=timeout)

    async def run_forever(self) -> None:
        """Block until the subscription ends; re-raises SubscriptionError."""
        await self.listener.wait()

    def stats(self) -> Dict[str, int]:
        return {
            "oracles_registered": len(self.registry.registered()),
            "oracles_failed": len(self.registry.failed()),
            "events_received": self.listener.received,
            "events_dropped": self.listener.dropped,
            "events_deferred": self.listener.deferred,
            "requests_dispatched": self.dispatcher.dispatched,
            "duplicates_skipped": self.dispatcher.duplicates,
            "responses_submitted": self.dispatcher.submissions,
            "submission_failures": self.dispatcher.submission_failures,
        }

    async def stop(self) -> None:
        """Stop listening and dispatching."""
        await self.listener.stop()
        await self.dispatcher.stop()

    async def close(self) -> None:
        """Stop everything and release resources."""
        await self.stop()
        await self.cache.close()
        await self.gateway.close()


async def run_oracle_network(
    gateway: LedgerGateway,
    config: Optional[OracleNetworkConfig] = None,
) -> None:
    """
    Convenience entry point: bootstrap, register, listen until the
    subscription dies.

    Raises:
        SubscriptionError: If the subscription cannot be established or dies
    """
    network = OracleNetwork(gateway, config)
    try:
        await network.bootstrap()
        await network.register_oracles()
        await network.start()
        await network.run_forever()
    finally:
        await network.close()
