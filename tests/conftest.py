"""Configure pytest fixtures and environment for CFP tests."""

import pytest
from dotenv import load_dotenv

from cfp.core.logging import setup_logging
from cfp.utils.reliability import get_circuit_breaker_status, reset_circuit_breaker


def pytest_sessionstart(session):
    """Load environment variables before any settings object is built."""
    load_dotenv()


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Prepare the test environment for each session."""
    setup_logging(debug=False, rich_output=False)
    yield


@pytest.fixture(autouse=True)
def reset_breakers():
    """Circuit breakers are process-wide; start every test with them closed."""
    yield
    for name in get_circuit_breaker_status():
        reset_circuit_breaker(name)
