"""Shared fixtures for the repair job tests."""

import pytest

from tests.helpers import InMemoryCandleRepository


@pytest.fixture
def repo():
    """Empty in-memory store; tests seed it with ``repo.add(keyspace, ...)``."""
    return InMemoryCandleRepository()
