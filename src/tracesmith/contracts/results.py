"""Result types returned across subsystem boundaries."""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from tracesmith.contracts.enums import MiningStatus, VerificationFailureReason
from tracesmith.contracts.patterns import ConsensusPattern
from tracesmith.contracts.workflows import SynthesizedWorkflow


@dataclass(frozen=True, slots=True)
class OracleResponse:
    """What the fallback oracle returns for one invocation."""

    success: bool
    output_summary: str = ""
    output: Mapping[str, Any] = field(default_factory=dict)
    cost: float = 0.0
    latency_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class ArmOutcome:
    """Result of executing one routing arm for one request."""

    success: bool
    output: Mapping[str, Any] = field(default_factory=dict)
    cost: float = 0.0
    latency_ms: float = 0.0
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ArmAttempt:
    """One arm tried while dispatching a request."""

    arm: str
    outcome: ArmOutcome


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Final result of dispatching a request through the router.

    attempts lists every arm tried in order; the last one produced
    ``arm`` / ``outcome``.
    """

    query_pattern: str
    fingerprint: str
    arm: str
    outcome: ArmOutcome
    attempts: tuple[ArmAttempt, ...]

    @property
    def success(self) -> bool:
        return self.outcome.success

    @property
    def total_cost(self) -> float:
        return sum(a.outcome.cost for a in self.attempts)


@dataclass(frozen=True, slots=True)
class MiningTrigger:
    """Event asking for one fingerprint to be mined."""

    fingerprint: str
    trace_count: int


@dataclass(frozen=True, slots=True)
class MiningOutcome:
    """Result of one fingerprint's mining cycle."""

    fingerprint: str
    status: MiningStatus
    detail: str = ""
    pattern: ConsensusPattern | None = None
    workflow: SynthesizedWorkflow | None = None
    verification_reason: VerificationFailureReason | None = None

    @property
    def deployed(self) -> bool:
        return self.status is MiningStatus.DEPLOYED


@dataclass(frozen=True, slots=True)
class CycleReport:
    """Outcomes of one mining cycle across fingerprints."""

    outcomes: tuple[MiningOutcome, ...]

    @property
    def counts(self) -> Mapping[MiningStatus, int]:
        return Counter(o.status for o in self.outcomes)

    @property
    def deployed_count(self) -> int:
        return self.counts.get(MiningStatus.DEPLOYED, 0)

    def for_fingerprint(self, fingerprint: str) -> MiningOutcome:
        for outcome in self.outcomes:
            if outcome.fingerprint == fingerprint:
                return outcome
        raise KeyError(fingerprint)
