"""
FlightSurety Oracles Package

The oracle core: identity registration, request listening and
response dispatch.
"""

from .registry import IdentityRegistry, IndexBucket
from .listener import EventListener, decode_event
from .dispatcher import ResponseDispatcher
from .dedup import RequestCache, RecentRequestCache, RedisRequestCache

__all__ = [
    "IdentityRegistry",
    "IndexBucket",
    "EventListener",
    "decode_event",
    "ResponseDispatcher",
    "RequestCache",
    "RecentRequestCache",
    "RedisRequestCache",
]
