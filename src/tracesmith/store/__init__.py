"""Stores for traces, patterns, workflows, and routing statistics."""

from tracesmith.store.database import StoreDB
from tracesmith.store.memory import (
    MemoryDeploymentStore,
    MemoryPatternStore,
    MemoryRouterStatsStore,
    MemoryTraceStore,
    MemoryWorkflowStore,
)
from tracesmith.store.sql import (
    SqlDeploymentStore,
    SqlPatternStore,
    SqlRouterStatsStore,
    SqlTraceStore,
    SqlWorkflowStore,
    sql_stores,
)

__all__ = [
    "MemoryDeploymentStore",
    "MemoryPatternStore",
    "MemoryRouterStatsStore",
    "MemoryTraceStore",
    "MemoryWorkflowStore",
    "SqlDeploymentStore",
    "SqlPatternStore",
    "SqlRouterStatsStore",
    "SqlTraceStore",
    "SqlWorkflowStore",
    "StoreDB",
    "sql_stores",
]
