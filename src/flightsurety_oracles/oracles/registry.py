"""
FlightSurety Identity Registry

Registers oracle identities with the ledger and keeps the index-partitioned
lookup table (IndexBucket) the dispatcher reads from.

Registration Flow (per identity):
    1. Mark PENDING
    2. registerOracle() with the fixed stake
    3. getMyIndexes() -> exactly 3 distinct indexes in [0, 9]
    4. Commit: identity becomes REGISTERED and enters IndexBucket in one
       synchronous step, so a lookup never sees a half-registered oracle

Any failure (insufficient stake, already registered, connection error,
timeout, malformed index assignment) marks the identity FAILED. The rest
of the pool keeps registering.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from ..exceptions import LedgerError, RegistrationError
from ..ledger.gateway import LedgerGateway
from ..models import (
    INDEX_COUNT,
    OracleIdentity,
    RegistrationState,
    validate_indexes,
)


logger = logging.getLogger(__name__)


class IndexBucket:
    """
    Mapping from index (0-9) to the accounts holding that index.

    Only REGISTERED identities are ever inserted.
    """

    def __init__(self):
        self._buckets: Dict[int, Set[str]] = {i: set() for i in range(INDEX_COUNT)}

    def insert(self, identity: OracleIdentity) -> None:
        if not identity.is_registered:
            raise ValueError(f"Cannot index unregistered identity {identity}")
        for index in identity.indexes:
            self._buckets[index].add(identity.account)

    def accounts_for(self, index: int) -> FrozenSet[str]:
        if not 0 <= index < INDEX_COUNT:
            raise ValueError(f"Index {index} outside [0, {INDEX_COUNT - 1}]")
        return frozenset(self._buckets[index])

    def sizes(self) -> Dict[int, int]:
        return {index: len(accounts) for index, accounts in self._buckets.items()}


class IdentityRegistry:
    """
    The oracle pool: identities, their registration state and IndexBucket.

    After close_registration() the registry has no writer left, so the
    dispatcher and listener read it without locking.

    Example:
        registry = IdentityRegistry(gateway, registration_fee_wei=10**18)
        await registry.register_all(accounts)
        registry.close_registration()

        for identity in registry.get_matching(5):
            ...
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        registration_fee_wei: int,
        timeout_seconds: float = 15.0,
        concurrency: int = 5,
    ):
        """
        Initialize the registry.

        Args:
            gateway: Ledger Gateway to register against
            registration_fee_wei: Stake sent with each registration
            timeout_seconds: Timeout for each ledger call
            concurrency: Max registrations in flight in register_all
        """
        self._gateway = gateway
        self._fee_wei = registration_fee_wei
        self._timeout = timeout_seconds
        self._concurrency = max(1, concurrency)

        self._identities: Dict[str, OracleIdentity] = {}
        self._bucket = IndexBucket()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def close_registration(self) -> None:
        """End the registration phase; the registry becomes read-only."""
        self._closed = True
        logger.info(
            f"Registration closed: {len(self.registered())} registered, "
            f"{len(self.failed())} failed"
        )

    async def register(self, account: str) -> OracleIdentity:
        """
        Register one oracle identity with the ledger.

        Never raises for ledger-side or unexpected failures; the returned
        identity is FAILED instead. If the call is cancelled the identity is
        marked FAILED before the cancellation propagates. An account already known to this registry is
        returned as-is without contacting the ledger again.

        Args:
            account: Oracle account address

        Returns:
            The identity in its resulting state
        """
        if self._closed:
            raise RuntimeError("Registration phase is closed")

        existing = self._identities.get(account)
        if existing is not None:
            logger.debug(f"Oracle {existing} already known, skipping registration")
            return existing

        identity = OracleIdentity(account=account).pending()
        self._identities[account] = identity

        try:
            await asyncio.wait_for(
                self._gateway.register_oracle(account, self._fee_wei),
                timeout=self._timeout,
            )
            raw_indexes = await asyncio.wait_for(
                self._gateway.get_my_indexes(account),
                timeout=self._timeout,
            )
            indexes = validate_indexes(raw_indexes)
        except asyncio.TimeoutError:
            return self._fail(identity, "ledger call timed out")
        except RegistrationError as e:
            return self._fail(identity, e.reason)
        except LedgerError as e:
            return self._fail(identity, str(e))
        except ValueError as e:
            return self._fail(identity, f"invalid index assignment: {e}")
        except asyncio.CancelledError:
            self._fail(identity, "registration cancelled")
            raise
        except Exception as e:
            logger.exception(f"Unexpected error registering oracle {account}")
            return self._fail(identity, f"unexpected error: {e!r}")

        # No await between here and the bucket insert
        registered = identity.registered(indexes)
        self._identities[account] = registered
        self._bucket.insert(registered)

        logger.info(f"Oracle {account} registered with indexes {list(indexes)}")
        return registered

    def _fail(self, identity: OracleIdentity, reason: str) -> OracleIdentity:
        failed = identity.failed(reason)
        self._identities[identity.account] = failed
        logger.warning(f"Oracle {identity.account} registration failed: {reason}")
        return failed

    async def register_all(self, accounts: Iterable[str]) -> List[OracleIdentity]:
        """
        Register a batch of identities concurrently.

        One identity failing never prevents the others from registering.
        Repeated accounts are registered once.

        Returns:
            Final identities, in first-seen input order
        """
        accounts = list(dict.fromkeys(accounts))
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _bounded(account: str) -> OracleIdentity:
            async with semaphore:
                return await self.register(account)

        results = await asyncio.gather(
            *(_bounded(account) for account in accounts),
            return_exceptions=True,
        )

        for account, result in zip(accounts, results):
            if isinstance(result, Exception):
                logger.error(f"Unexpected error registering oracle {account}: {result!r}")
                identity = self._identities.get(account)
                if identity is not None and identity.state == RegistrationState.PENDING:
                    self._fail(identity, f"unexpected error: {result}")

        identities = [self._identities[account] for account in accounts if account in self._identities]
        registered = sum(1 for i in identities if i.is_registered)
        logger.info(
            f"{registered}/{len(accounts)} oracles registered "
            f"({len(accounts) - registered} failed)"
        )
        return identities

    def get_matching(self, index: int) -> List[OracleIdentity]:
        """
        Identities whose index set contains `index`.

        Only committed (REGISTERED) identities are returned.

        Raises:
            ValueError: If index is outside [0, 9]
        """
        return [
            self._identities[account]
            for account in sorted(self._bucket.accounts_for(index))
        ]

    def get(self, account: str) -> Optional[OracleIdentity]:
        return self._identities.get(account)

    def identities(self) -> List[OracleIdentity]:
        return list(self._identities.values())

    def registered(self) -> List[OracleIdentity]:
        return [i for i in self._identities.values() if i.is_registered]

    def failed(self) -> List[OracleIdentity]:
        return [
            i for i in self._identities.values()
            if i.state == RegistrationState.FAILED
        ]

    def bucket_sizes(self) -> Dict[int, int]:
        """Number of registered oracles per index."""
        return self._bucket.sizes()

    def __len__(self) -> int:
        return len(self._identities)
