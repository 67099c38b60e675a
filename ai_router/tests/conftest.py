from __future__ import annotations

import pytest

from ai_router.stores.memory import InMemoryGraphStore, InMemoryIntegrationStore
from ai_router.tests.fakes import FakeScheduler


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def graph_store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def integrations() -> InMemoryIntegrationStore:
    return InMemoryIntegrationStore()
