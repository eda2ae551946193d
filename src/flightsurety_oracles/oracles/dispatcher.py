"""
FlightSurety Response Dispatcher

For every decoded StatusRequest, each registered oracle holding the
request's index independently generates a status code and submits it to
the ledger as itself.

Logic Flow:
    1. Dedup: a key seen within the TTL is skipped
    2. Look up matching identities in the IdentityRegistry
    3. Fan out one submission per identity, concurrently, each under its
       own timeout
    4. Failures (revert, timeout, nonce conflict) are logged per identity
       and never retried; the ledger's majority vote only needs enough
       of the other oracles to answer

No ordering is imposed among the submissions of one request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set, Tuple

from ..exceptions import LedgerError
from ..ledger.gateway import LedgerGateway
from ..models import DispatchReport, OracleIdentity, StatusRequest, StatusResponse
from ..status import StatusCodeGenerator
from .dedup import RecentRequestCache, RequestCache
from .registry import IdentityRegistry


logger = logging.getLogger(__name__)


class ResponseDispatcher:
    """
    Turns status requests into oracle responses.

    Example:
        dispatcher = ResponseDispatcher(registry, gateway)
        report = await dispatcher.dispatch(request)

        # or consume the listener's queue in the background
        dispatcher.start(queue)
        ...
        await dispatcher.stop()
    """

    def __init__(
        self,
        registry: IdentityRegistry,
        gateway: LedgerGateway,
        generator: Optional[StatusCodeGenerator] = None,
        cache: Optional[RequestCache] = None,
        submission_timeout_seconds: float = 10.0,
        max_concurrent_dispatches: int = 32,
    ):
        """
        Initialize the dispatcher.

        Args:
            registry: Source of matching identities (read-only here)
            gateway: Ledger Gateway accepting responses
            generator: Status code source (defaults to uniform random)
            cache: Dedup cache (defaults to in-memory, 5 minute TTL)
            submission_timeout_seconds: Timeout for each submission
            max_concurrent_dispatches: Requests dispatched at once by the
                background consumer
        """
        self._registry = registry
        self._gateway = gateway
        self._generator = generator or StatusCodeGenerator()
        self._cache = cache if cache is not None else RecentRequestCache()
        self._timeout = submission_timeout_seconds
        self._max_concurrent = max(1, max_concurrent_dispatches)

        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._slots: Optional[asyncio.Semaphore] = None

        self.dispatched = 0
        self.duplicates = 0
        self.submissions = 0
        self.submission_failures = 0

    async def dispatch(self, request: StatusRequest) -> DispatchReport:
        """
        Submit one response per matching identity.

        Never raises for ledger-side failures; they are collected in the
        returned report.
        """
        report = DispatchReport(request=request)

        if not await self._cache.check_and_mark(request.key):
            self.duplicates += 1
            report.duplicate = True
            logger.debug(f"Skipping re-delivered request {request}")
            return report

        matches = self._registry.get_matching(request.index)
        report.matched = [identity.account for identity in matches]
        self.dispatched += 1

        if not matches:
            logger.warning(f"No registered oracle holds index {request.index} for {request}")
            return report

        results = await asyncio.gather(
            *(self._submit(identity, request) for identity in matches)
        )

        for account, response, error in results:
            if response is not None:
                report.submitted.append(response)
            else:
                report.failures[account] = error

        self.submissions += len(report.submitted)
        self.submission_failures += len(report.failures)
        logger.info(
            f"Request {request}: {len(report.submitted)}/{len(matches)} "
            f"oracle responses submitted"
        )
        return report

    async def _submit(
        self,
        identity: OracleIdentity,
        request: StatusRequest,
    ) -> Tuple[str, Optional[StatusResponse], Optional[str]]:
        """Generate and submit one oracle's response; never raises."""
        status_code = self._generator.next()
        try:
            await asyncio.wait_for(
                self._gateway.submit_oracle_response(
                    identity.account,
                    request.index,
                    request.airline,
                    request.flight,
                    request.timestamp,
                    int(status_code),
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            error = f"submission timed out after {self._timeout}s"
        except LedgerError as e:
            error = str(e)
        except Exception as e:
            error = f"unexpected error: {e!r}"
            logger.exception(f"Unexpected submission failure for {identity.account}")
        else:
            logger.debug(f"Oracle {identity.account} answered {request} with {status_code.name}")
            return (
                identity.account,
                StatusResponse(request=request, account=identity.account, status_code=status_code),
                None,
            )

        logger.warning(f"Oracle {identity.account} could not answer {request}: {error}")
        return identity.account, None, error

    # -------------------------------------------------------------------------
    # Background consumer
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def start(self, queue: "asyncio.Queue[StatusRequest]") -> asyncio.Task:
        """Consume requests from the listener's queue in the background."""
        if self.is_running:
            raise RuntimeError("Dispatcher already running")
        self._queue = queue
        self._slots = asyncio.Semaphore(self._max_concurrent)
        self._consumer = asyncio.create_task(self._consume(queue), name="oracle-response-dispatcher")
        return self._consumer

    async def _consume(self, queue: "asyncio.Queue[StatusRequest]") -> None:
        while True:
            request = await queue.get()
            await self._slots.acquire()
            task = asyncio.create_task(self.dispatch(request))
            self._in_flight.add(task)
            task.add_done_callback(lambda t: self._finish(t, queue))

    def _finish(self, task: asyncio.Task, queue: asyncio.Queue) -> None:
        self._in_flight.discard(task)
        self._slots.release()
        queue.task_done()
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Dispatch task failed: {task.exception()!r}")

    async def drain(self) -> None:
        """Wait until every queued request has been dispatched."""
        if self._consumer is None:
            return
        await self._queue.join()

    async def stop(self) -> None:
        """Stop consuming; in-flight submissions are abandoned."""
        tasks = list(self._in_flight)
        if self._consumer is not None:
            tasks.append(self._consumer)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._consumer = None
        self._in_flight.clear()

        if self.dispatched:
            logger.info(
                f"Dispatcher stopped: {self.dispatched} requests, "
                f"{self.submissions} submissions, {self.submission_failures} failures, "
                f"{self.duplicates} duplicates skipped"
            )
