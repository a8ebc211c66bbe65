"""Engine: mining service, scheduling, request dispatch, workflow execution, retry."""

from tracesmith.engine.dispatcher import RequestDispatcher
from tracesmith.engine.executor import WorkflowExecutor, contract_problems
from tracesmith.core.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from tracesmith.engine.scheduler import MiningScheduler
from tracesmith.engine.service import MiningService

__all__ = [
    "MaxRetriesExceeded",
    "MiningScheduler",
    "MiningService",
    "RequestDispatcher",
    "RetryConfig",
    "RetryManager",
    "WorkflowExecutor",
    "contract_problems",
]
