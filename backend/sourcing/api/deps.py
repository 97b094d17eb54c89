"""
Shared API dependencies.

WHAT: Process-wide store and runner for the endpoints
WHY: Every request must reach the same state machine cache
HOW: Lazily created singletons exposed as FastAPI dependencies
"""

from functools import lru_cache

from ..core.store import SQLStore
from ..services.negotiation_runner import NegotiationRunner


@lru_cache(maxsize=1)
def get_store() -> SQLStore:
    return SQLStore()


@lru_cache(maxsize=1)
def get_runner() -> NegotiationRunner:
    return NegotiationRunner(get_store())
