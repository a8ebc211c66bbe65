# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Iterator

import pytest
from hypothesis import Phase, Verbosity, settings

from tracesmith.core.config import RouterSettings
from tracesmith.routing import BanditRouter
from tracesmith.store import (
    MemoryDeploymentStore,
    MemoryPatternStore,
    MemoryRouterStatsStore,
    MemoryTraceStore,
    MemoryWorkflowStore,
    StoreDB,
)

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Store fixtures
# =============================================================================


@pytest.fixture
def trace_store() -> MemoryTraceStore:
    return MemoryTraceStore()


@pytest.fixture
def pattern_store() -> MemoryPatternStore:
    return MemoryPatternStore()


@pytest.fixture
def workflow_store() -> MemoryWorkflowStore:
    return MemoryWorkflowStore()


@pytest.fixture
def deployment_store(pattern_store: MemoryPatternStore, workflow_store: MemoryWorkflowStore) -> MemoryDeploymentStore:
    return MemoryDeploymentStore(pattern_store, workflow_store)


@pytest.fixture
def stats_store() -> MemoryRouterStatsStore:
    return MemoryRouterStatsStore()


@pytest.fixture
def router(stats_store: MemoryRouterStatsStore) -> BanditRouter:
    return BanditRouter(stats_store, RouterSettings(seed=1234))


@pytest.fixture
def store_db() -> Iterator[StoreDB]:
    db = StoreDB.in_memory()
    yield db
    db.close()
