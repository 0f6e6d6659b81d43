"""Unit-level conftest: a populated NodeStore with a frozen clock."""

import pytest

from ost_forge.store import NodeStore

from tests.conftest import NOW


@pytest.fixture
def store(sample_forest):
    """NodeStore over the sample forest; every mutation is stamped with NOW."""
    return NodeStore(sample_forest, clock=lambda: NOW)


@pytest.fixture
def empty_store():
    return NodeStore(clock=lambda: NOW)
