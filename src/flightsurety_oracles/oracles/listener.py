"""
FlightSurety Event Listener

Subscribes to the ledger's OracleRequest events and hands validated
StatusRequest values to the dispatcher through an asyncio.Queue.

Logic Flow:
    1. subscribe(from_block) opens the stream; failure here is fatal
    2. A background task decodes each raw event:
       - StatusRequest -> put_nowait on the queue (never waits on dispatch);
         if a bounded queue is full the put is parked, never dropped
       - DecodeFailure -> logged and dropped
    3. If the stream dies, the task ends with SubscriptionError

Accepted payload shapes:
    {"index": 5, "airline": "0x..", "flight": "A1111", "timestamp": 1633963343}
    {"args": {...same fields...}, "blockNumber": 42}    (web3 log)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Optional, Set, Union

from pydantic import ValidationError

from ..exceptions import DecodeError, SubscriptionError
from ..ledger.gateway import LedgerGateway
from ..models import DecodeFailure, StatusRequest


logger = logging.getLogger(__name__)


_REQUIRED_FIELDS = ("index", "airline", "flight", "timestamp")


def _parse_event(raw: Any) -> StatusRequest:
    """
    Parse a raw event payload.

    Raises:
        DecodeError: If the payload is not a well-formed OracleRequest
    """
    if not isinstance(raw, Mapping):
        raise DecodeError(f"Event payload is not a mapping: {type(raw).__name__}", raw)

    args = raw.get("args", raw)
    if not isinstance(args, Mapping):
        raise DecodeError("Event 'args' is not a mapping", raw)

    missing = [name for name in _REQUIRED_FIELDS if args.get(name) is None]
    if missing:
        raise DecodeError(f"Event missing field(s): {', '.join(missing)}", raw)

    # bool is an int subclass; a boolean index is never legitimate
    for name in ("index", "timestamp"):
        value = args[name]
        if isinstance(value, bool) or not isinstance(value, int):
            raise DecodeError(
                f"Event field '{name}' must be an integer, got {type(value).__name__}", raw
            )

    for name in ("airline", "flight"):
        value = args[name]
        if not isinstance(value, str):
            raise DecodeError(
                f"Event field '{name}' must be a string, got {type(value).__name__}", raw
            )

    try:
        return StatusRequest(
            index=args["index"],
            airline=args["airline"],
            flight=args["flight"],
            timestamp=args["timestamp"],
            block_number=raw.get("blockNumber"),
        )
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise DecodeError(f"Invalid event: {errors}", raw) from e


def decode_event(raw: Any) -> Union[StatusRequest, DecodeFailure]:
    """
    Decode a raw ledger event into a StatusRequest or a DecodeFailure.

    Never raises.
    """
    try:
        return _parse_event(raw)
    except DecodeError as e:
        return DecodeFailure(reason=e.reason, raw=raw)


class EventListener:
    """
    Long-lived OracleRequest subscription.

    Example:
        queue: asyncio.Queue[StatusRequest] = asyncio.Queue()
        listener = EventListener(gateway, queue)
        await listener.subscribe(from_block=0)   # raises SubscriptionError
        ...
        await listener.stop()
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        queue: "asyncio.Queue[StatusRequest]",
        open_timeout_seconds: float = 10.0,
    ):
        """
        Args:
            gateway: Ledger Gateway providing the event stream
            queue: Where decoded requests are handed to the dispatcher
            open_timeout_seconds: Timeout for establishing the subscription
        """
        self._gateway = gateway
        self._queue = queue
        self._open_timeout = open_timeout_seconds
        self._task: Optional[asyncio.Task] = None

        self.received = 0
        self.decoded = 0
        self.dropped = 0
        self.deferred = 0
        self._pending_puts: Set[asyncio.Task] = set()
        self.last_block: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def subscribe(self, from_block: int = 0) -> asyncio.Task:
        """
        Open the subscription and start the background decode loop.

        Raises:
            SubscriptionError: If the subscription cannot be established
        """
        if self.is_running:
            raise RuntimeError("Listener already subscribed")

        try:
            stream = await asyncio.wait_for(
                self._gateway.subscribe_requests(from_block),
                timeout=self._open_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Timed out opening OracleRequest subscription at block {from_block}")
            raise SubscriptionError("Timed out opening OracleRequest subscription") from e
        except Exception as e:
            logger.error(f"Failed to open OracleRequest subscription: {e}")
            raise SubscriptionError(f"Cannot subscribe to OracleRequest events: {e}") from e

        logger.info(f"Listening for OracleRequest events from block {from_block}")
        self._task = asyncio.create_task(self._listen(stream), name="oracle-request-listener")
        return self._task

    async def _listen(self, stream) -> None:
        try:
            async for raw in stream:
                self.handle_event(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"OracleRequest stream failed: {e}")
            raise SubscriptionError(f"OracleRequest stream failed: {e}") from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        logger.info("OracleRequest stream ended")

    def handle_event(self, raw: Any) -> Optional[StatusRequest]:
        """
        Decode one raw event and hand it onward.

        A valid request is never dropped. If a bounded queue is full, the
        put is parked in a background task that completes once the
        dispatcher frees a slot, so the subscription loop keeps reading.

        Returns:
            The decoded request, or None if the event was malformed
        """
        self.received += 1
        result = decode_event(raw)

        if isinstance(result, DecodeFailure):
            self.dropped += 1
            logger.warning(f"Dropping malformed OracleRequest event: {result.reason}")
            return None

        if result.block_number is not None:
            self.last_block = result.block_number

        self.decoded += 1
        try:
            self._queue.put_nowait(result)
        except asyncio.QueueFull:
            self.deferred += 1
            task = asyncio.create_task(self._queue.put(result))
            self._pending_puts.add(task)
            task.add_done_callback(self._pending_puts.discard)
            logger.warning(f"Dispatch queue full, deferring request {result}")
            return result

        logger.debug(f"Queued status request {result}")
        return result

    @property
    def pending(self) -> int:
        """Requests waiting for room in a full queue."""
        return len(self._pending_puts)

    async def wait(self) -> None:
        """Wait for the listener task to end; re-raises its failure."""
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        """Cancel the subscription loop and any parked queue puts."""
        parked = list(self._pending_puts)
        for task in parked:
            task.cancel()
        if parked:
            await asyncio.gather(*parked, return_exceptions=True)
            logger.warning(f"Listener stopped with {len(parked)} undelivered requests")

        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except SubscriptionError as e:
            logger.debug(f"Listener stopped after failure: {e}")
        self._task = None
