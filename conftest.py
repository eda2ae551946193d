"""
FlightSurety Oracles - pytest Configuration

Shared fixtures and configuration for all tests.
"""

import pytest
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires a ledger node or Redis)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection based on markers."""
    # Skip integration tests by default unless explicitly requested
    if not config.getoption("--run-integration", default=False):
        skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_integration)


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="run integration tests that require external services"
    )


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """A simulated FlightSuretyApp ledger with 21 accounts."""
    from flightsurety_oracles.ledger import InMemoryLedgerGateway
    return InMemoryLedgerGateway(account_count=21, seed=1234)


@pytest.fixture
def registration_fee(ledger):
    return ledger.registration_fee_wei


@pytest.fixture
def airline():
    return "0x" + "a1" * 20


# =============================================================================
# CONFIGURATION FIXTURES
# =============================================================================

@pytest.fixture
def test_config():
    """A development configuration with short timeouts."""
    from flightsurety_oracles.config import (
        OracleNetworkConfig,
        Environment,
        RegistrationConfig,
        DispatchConfig,
    )

    return OracleNetworkConfig(
        environment=Environment.DEVELOPMENT,
        registration=RegistrationConfig(timeout_seconds=1.0, concurrency=4),
        dispatch=DispatchConfig(submission_timeout_seconds=0.5, dedup_ttl_seconds=60),
    )
