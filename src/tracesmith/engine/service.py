# src/tracesmith/engine/service.py
"""MiningService: the per-fingerprint learn-compile-deploy pipeline.

For one fingerprint the stages run strictly in order:

    fetch traces -> mine pattern -> compile -> verify -> deploy -> register arm

Every failure is caught at the fingerprint boundary and reported as a
MiningOutcome, so one bad fingerprint never affects another. Store calls
go through the RetryManager; deployment writes the pattern and workflow
in a single store transaction, after verification and never before.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

import structlog

from tracesmith.contracts.enums import MiningStatus
from tracesmith.contracts.errors import (
    AlignmentBelowThreshold,
    InsufficientData,
    LowConfidence,
    RouterUpdateRace,
    StorageError,
)
from tracesmith.contracts.results import CycleReport, MiningOutcome, MiningTrigger
from tracesmith.contracts.routing import synthesized_arm
from tracesmith.contracts.stores import DeploymentStore, TraceStore, WorkflowStore
from tracesmith.core.config import TracesmithSettings
from tracesmith.core.fingerprint import query_pattern
from tracesmith.core.logging import fingerprint_context
from tracesmith.core.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from tracesmith.mining.miner import PatternMiner
from tracesmith.routing.router import BanditRouter
from tracesmith.synthesis.compiler import WorkflowCompiler
from tracesmith.synthesis.verifier import StructuralVerifier

slog = structlog.get_logger(__name__)

T = TypeVar("T")


class MiningService:
    """Mines fingerprints and deploys the workflows that pass verification.

    Example:
        service = MiningService(
            traces=trace_store,
            workflows=workflow_store,
            deployments=deployment_store,
            router=router,
            settings=settings,
        )
        report = service.run_cycle()
        report.deployed_count
    """

    def __init__(
        self,
        *,
        traces: TraceStore,
        workflows: WorkflowStore,
        deployments: DeploymentStore,
        router: BanditRouter,
        settings: TracesmithSettings | None = None,
        retry_manager: RetryManager | None = None,
    ) -> None:
        self._traces = traces
        self._workflows = workflows
        self._deployments = deployments
        self._router = router
        self._settings = settings or TracesmithSettings()
        self._retry = retry_manager or RetryManager(RetryConfig.from_settings(self._settings.retry))
        self._miner = PatternMiner(self._settings.mining, self._settings.confidence)
        self._compiler = WorkflowCompiler(
            self._settings.synthesis,
            required_threshold=self._settings.mining.required_threshold,
        )
        self._verifier = StructuralVerifier(self._settings.confidence.threshold)

    @property
    def settings(self) -> TracesmithSettings:
        return self._settings

    def _with_retry(self, operation: Callable[[], T], what: str, fingerprint: str | None = None) -> T:
        def on_retry(attempt: int, error: BaseException) -> None:
            slog.warning("store_operation_retry", operation=what, fingerprint=fingerprint, attempt=attempt, error=str(error))

        return self._retry.execute_with_retry(operation, on_retry=on_retry)

    def mine_fingerprint(self, fingerprint: str) -> MiningOutcome:
        """Run the full pipeline for one fingerprint. Never raises."""
        try:
            with fingerprint_context(fingerprint):
                return self._mine(fingerprint)
        except InsufficientData as e:
            slog.debug("mining_skipped", fingerprint=fingerprint, available=e.available, required=e.required)
            return MiningOutcome(fingerprint=fingerprint, status=MiningStatus.SKIPPED, detail=str(e))
        except AlignmentBelowThreshold as e:
            slog.info("alignment_below_threshold", fingerprint=fingerprint, score=e.score, threshold=e.threshold)
            return MiningOutcome(fingerprint=fingerprint, status=MiningStatus.ALIGNMENT_BELOW_THRESHOLD, detail=str(e))
        except LowConfidence as e:
            slog.info("pattern_low_confidence", fingerprint=fingerprint, confidence=e.confidence, threshold=e.threshold)
            return MiningOutcome(fingerprint=fingerprint, status=MiningStatus.LOW_CONFIDENCE, detail=str(e))
        except (MaxRetriesExceeded, StorageError) as e:
            slog.error("mining_storage_failed", fingerprint=fingerprint, error=str(e))
            return MiningOutcome(fingerprint=fingerprint, status=MiningStatus.STORAGE_FAILED, detail=str(e))
        except Exception as e:
            # Bulkhead: an unexpected failure is confined to this fingerprint
            slog.exception("mining_failed", fingerprint=fingerprint, error_type=type(e).__name__)
            return MiningOutcome(fingerprint=fingerprint, status=MiningStatus.FAILED, detail=f"{type(e).__name__}: {e}")

    def _mine(self, fingerprint: str) -> MiningOutcome:
        limit = self._settings.mining.trace_limit
        traces = self._with_retry(
            lambda: self._traces.list_successful_traces(fingerprint, limit), "list_traces", fingerprint
        )

        pattern = self._miner.mine(fingerprint, traces)
        workflow = self._compiler.compile(pattern, traces)

        verification = self._verifier.verify(workflow)
        workflow = workflow.with_verification(verification)
        if not verification.passed:
            return MiningOutcome(
                fingerprint=fingerprint,
                status=MiningStatus.VERIFICATION_FAILED,
                detail=verification.detail,
                pattern=pattern,
                workflow=workflow,
                verification_reason=verification.reason,
            )

        existing = self._with_retry(lambda: self._workflows.get(fingerprint), "get_workflow", fingerprint)
        if existing is not None and workflow.confidence <= existing.confidence:
            slog.info(
                "workflow_not_improved",
                fingerprint=fingerprint,
                confidence=workflow.confidence,
                deployed_confidence=existing.confidence,
            )
            return MiningOutcome(
                fingerprint=fingerprint,
                status=MiningStatus.NOT_IMPROVED,
                detail=f"deployed workflow {existing.workflow_id} has confidence {existing.confidence:.3f}",
                pattern=pattern,
                workflow=workflow,
            )

        self._with_retry(lambda: self._deployments.deploy(pattern, workflow), "deploy", fingerprint)
        slog.info(
            "workflow_deployed",
            fingerprint=fingerprint,
            workflow_id=workflow.workflow_id,
            pattern_id=pattern.pattern_id,
            confidence=workflow.confidence,
            superseded=existing.workflow_id if existing is not None else None,
        )

        detail = ""
        arm = synthesized_arm(fingerprint)
        routing_key = query_pattern(pattern.query)
        try:
            self._router.register_arm(routing_key, arm)
        except (RouterUpdateRace, StorageError, MaxRetriesExceeded) as e:
            # The dispatcher registers deployed arms on demand, so routing still converges
            slog.warning("arm_registration_failed", fingerprint=fingerprint, arm=arm, error=str(e))
            detail = f"arm registration deferred: {e}"

        return MiningOutcome(
            fingerprint=fingerprint,
            status=MiningStatus.DEPLOYED,
            detail=detail,
            pattern=pattern,
            workflow=workflow,
        )

    def run_cycle(self, fingerprints: Sequence[str] | None = None) -> CycleReport:
        """Mine every known fingerprint (or the given ones) concurrently."""
        if fingerprints is None:
            fingerprints = self._with_retry(self._traces.list_fingerprints, "list_fingerprints")
        targets = list(dict.fromkeys(fingerprints))

        slog.info("mining_cycle_started", fingerprint_count=len(targets))
        with ThreadPoolExecutor(
            max_workers=self._settings.concurrency.max_workers,
            thread_name_prefix="tracesmith-miner",
        ) as pool:
            outcomes = tuple(pool.map(self.mine_fingerprint, targets))

        report = CycleReport(outcomes=outcomes)
        slog.info(
            "mining_cycle_completed",
            fingerprint_count=len(targets),
            **{f"{status.value}_count": count for status, count in report.counts.items()},
        )
        return report

    def handle_trigger(self, trigger: MiningTrigger) -> MiningOutcome:
        """Mine on an explicit event once enough traces have accumulated."""
        required = self._settings.mining.min_traces
        if trigger.trace_count < required:
            return MiningOutcome(
                fingerprint=trigger.fingerprint,
                status=MiningStatus.SKIPPED,
                detail=f"{trigger.trace_count} trace(s) reported, {required} required",
            )
        return self.mine_fingerprint(trigger.fingerprint)
