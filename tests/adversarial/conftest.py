"""
Shared fixtures for adversarial tests.

Every adversarial test runs twice: against the in-memory store and
against PostgreSQL (skipped when the database is unreachable). The
service fixtures from tests/conftest.py pick up whichever store is active.
"""

import pytest

from src.adapters.repository.memory import MemoryStore
from src.domain.ports import Store

# Module-level marker for all adversarial tests
pytestmark = pytest.mark.adversarial


@pytest.fixture(params=["memory", "postgres"])
def store(request: pytest.FixtureRequest) -> Store:
    """Store under attack, parametrized over both adapters."""
    if request.param == "postgres":
        return request.getfixturevalue("postgres_store")
    return MemoryStore()
