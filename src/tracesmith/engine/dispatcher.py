# src/tracesmith/engine/dispatcher.py
"""RequestDispatcher: serve one request through the bandit router.

Candidate arms for a request, in this order:
    exact                when the deterministic handler covers the fingerprint
    synthesized:<fp>     when a workflow is deployed for the fingerprint
    fallback             always

The router picks among the remaining candidates; a failed non-fallback
arm is dropped and the router picks again, so the fallback oracle is
always the last resort. Every attempt's outcome is fed back to the router.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from functools import partial
from typing import Any

import structlog

from tracesmith.contracts.enums import ArmKind
from tracesmith.contracts.errors import ArmUnavailable, RouterUpdateRace, StorageError, WorkflowExecutionError
from tracesmith.contracts.results import ArmAttempt, ArmOutcome, DispatchResult
from tracesmith.contracts.routing import EXACT_ARM, FALLBACK_ARM, arm_kind, synthesized_arm
from tracesmith.contracts.stores import DeterministicHandler, FallbackOracle, WorkflowStore
from tracesmith.contracts.workflows import SynthesizedWorkflow
from tracesmith.core.fingerprint import query_pattern, request_fingerprint
from tracesmith.core.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from tracesmith.engine.executor import WorkflowExecutor
from tracesmith.routing.router import BanditRouter

slog = structlog.get_logger(__name__)

_STORE_FAILURES = (StorageError, MaxRetriesExceeded)


class RequestDispatcher:
    """Routes requests to exact handlers, synthesized workflows, or the oracle.

    Store failures never fail a request on their own. A workflow lookup
    that keeps failing drops the synthesized candidate, a router that
    cannot read its stats hands the request to the fallback, and an
    outcome the router cannot record is logged and the result returned.

    Example:
        dispatcher = RequestDispatcher(router, workflow_store, oracle, WorkflowExecutor(actions))
        result = dispatcher.dispatch("Show revenue by region", {"region": "emea"})
        result.arm, result.success
    """

    def __init__(
        self,
        router: BanditRouter,
        workflows: WorkflowStore,
        oracle: FallbackOracle,
        executor: WorkflowExecutor,
        handler: DeterministicHandler | None = None,
        *,
        timer: Callable[[], float] = time.perf_counter,
        retry_manager: RetryManager | None = None,
    ) -> None:
        self._router = router
        self._workflows = workflows
        self._oracle = oracle
        self._executor = executor
        self._handler = handler
        self._timer = timer
        self._retry = retry_manager or RetryManager(RetryConfig())

    def _load_workflow(self, fingerprint: str) -> SynthesizedWorkflow | None:
        def on_retry(attempt: int, error: BaseException) -> None:
            slog.warning("workflow_lookup_retry", fingerprint=fingerprint, attempt=attempt, error=str(error))

        return self._retry.execute_with_retry(partial(self._workflows.get, fingerprint), on_retry=on_retry)

    def _has_workflow(self, fingerprint: str) -> bool:
        try:
            return self._load_workflow(fingerprint) is not None
        except _STORE_FAILURES as e:
            slog.warning("workflow_lookup_failed", fingerprint=fingerprint, error=str(e))
            return False

    def candidates(self, fingerprint: str) -> list[str]:
        arms: list[str] = []
        if self._handler is not None and self._handler.can_handle(fingerprint):
            arms.append(EXACT_ARM)
        if self._has_workflow(fingerprint):
            arms.append(synthesized_arm(fingerprint))
        arms.append(FALLBACK_ARM)
        return arms

    def _select(self, routing_key: str, remaining: list[str]) -> str:
        try:
            return self._router.select(routing_key, remaining)
        except (RouterUpdateRace, *_STORE_FAILURES) as e:
            slog.warning("arm_selection_failed", query_pattern=routing_key, candidates=remaining, error=str(e))
            return FALLBACK_ARM

    def dispatch(self, query: str, payload: Mapping[str, Any]) -> DispatchResult:
        routing_key = query_pattern(query)
        fingerprint = request_fingerprint(query)

        remaining = self.candidates(fingerprint)
        attempts: list[ArmAttempt] = []

        while True:
            arm = self._select(routing_key, remaining)
            outcome = self._run_arm(arm, fingerprint, query, payload)
            attempts.append(ArmAttempt(arm=arm, outcome=outcome))
            self._record(routing_key, arm, outcome.success)

            if outcome.success or arm == FALLBACK_ARM:
                slog.info(
                    "request_dispatched",
                    query_pattern=routing_key,
                    fingerprint=fingerprint,
                    arm=arm,
                    success=outcome.success,
                    attempts=len(attempts),
                )
                return DispatchResult(
                    query_pattern=routing_key,
                    fingerprint=fingerprint,
                    arm=arm,
                    outcome=outcome,
                    attempts=tuple(attempts),
                )

            slog.info("arm_failed_falling_through", query_pattern=routing_key, arm=arm, error=outcome.error)
            remaining.remove(arm)

    def _record(self, routing_key: str, arm: str, success: bool) -> None:
        try:
            self._router.update(routing_key, arm, success)
        except (RouterUpdateRace, *_STORE_FAILURES) as e:
            # The router already retried; the request stands on its own result
            slog.error("router_update_failed", query_pattern=routing_key, arm=arm, success=success, error=str(e))

    def _run_arm(self, arm: str, fingerprint: str, query: str, payload: Mapping[str, Any]) -> ArmOutcome:
        started = self._timer()
        kind = arm_kind(arm)
        try:
            if kind is ArmKind.EXACT:
                if self._handler is None:
                    raise ArmUnavailable(arm, "no deterministic handler configured")
                return self._handler.handle(fingerprint, payload)
            if kind is ArmKind.SYNTHESIZED:
                return self._run_workflow(fingerprint, payload, started)
            response = self._oracle.invoke(query, payload)
            return ArmOutcome(
                success=response.success,
                output=response.output,
                cost=response.cost,
                latency_ms=response.latency_ms,
                error=None if response.success else response.output_summary or "oracle reported failure",
            )
        except Exception as e:
            # Collaborator failures are arm failures; the next candidate gets a turn
            slog.warning("arm_raised", arm=arm, fingerprint=fingerprint, error_type=type(e).__name__, error=str(e))
            return ArmOutcome(
                success=False,
                latency_ms=(self._timer() - started) * 1000,
                error=f"{type(e).__name__}: {e}",
            )

    def _run_workflow(self, fingerprint: str, payload: Mapping[str, Any], started: float) -> ArmOutcome:
        workflow = self._load_workflow(fingerprint)
        if workflow is None:
            raise ArmUnavailable(synthesized_arm(fingerprint), "no workflow deployed")
        try:
            output = self._executor.execute(workflow, payload)
        except WorkflowExecutionError as e:
            return ArmOutcome(success=False, latency_ms=(self._timer() - started) * 1000, error=str(e))
        return ArmOutcome(success=True, output=output, latency_ms=(self._timer() - started) * 1000)
