"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with markers and shared fixtures
WHY: Enable test organization, filtering, and shared test utilities
HOW: Define pytest markers, point settings at a throwaway database, build stores
"""

import os
import tempfile
from pathlib import Path

# Settings are read at import time; isolate them before sourcing is imported
_TEST_DIR = Path(tempfile.mkdtemp(prefix="sourcing-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DIR / 'app.db'}")
os.environ.setdefault("LOG_FILE", str(_TEST_DIR / "logs" / "app.log"))
os.environ.setdefault("LOG_NEGOTIATION_FILE", str(_TEST_DIR / "logs" / "negotiations.log"))

import pytest

from sourcing.core.database import build_engine, build_session_factory, init_db
from sourcing.core.store import SQLStore
from sourcing.models.negotiation import DecisionPriorities, NegotiationState
from sourcing.models.quote import QuoteProduct
from sourcing.services.impasse_detector import NegotiationConfig

from tests.fixtures.fake_gateway import RecordingCallbacks


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests (full system)"
    )


@pytest.fixture
def negotiation_config():
    """Default thresholds, spelled out so tests do not depend on the environment."""
    return NegotiationConfig(
        max_rounds=8,
        stagnation_window=3,
        stagnation_epsilon_percent=1.0,
        price_gap_threshold_percent=40.0,
    )


@pytest.fixture
def negotiation_state():
    """Fresh active negotiation with supplier 1."""
    return NegotiationState(
        negotiation_id="neg-1",
        quote_id="quote-1",
        supplier_id=1,
    )


@pytest.fixture
def callbacks():
    return RecordingCallbacks()


@pytest.fixture
def store(tmp_path):
    """
    SQLStore on its own SQLite file.

    WHAT: Isolated persistence per test
    WHY: Tests must not see each other's quotes or decisions
    HOW: Build engine + tables under tmp_path, dispose afterwards
    """
    engine = build_engine(f"sqlite:///{tmp_path / 'store.db'}")
    init_db(engine)
    yield SQLStore(build_session_factory(engine))
    engine.dispose()


@pytest.fixture
def priorities():
    return DecisionPriorities(quality=25, cost=50, lead_time=15, payment_terms=10)


@pytest.fixture
def open_quote(store, priorities):
    """Quote with negotiations for suppliers 1-3."""
    quote, negotiations = store.create_quote(
        [QuoteProduct(product_id="prod-1", quantity=500)],
        priorities,
        supplier_ids=[1, 2, 3],
    )
    return quote, negotiations
