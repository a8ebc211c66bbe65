"""Routing arm statistics contracts.

RoutingArmStats is a value object: every update returns a new instance
with version + 1. Stores use the version for compare-and-set, so two
writers starting from the same version cannot both succeed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from tracesmith.contracts.enums import ArmKind
from tracesmith.contracts.errors import UnknownArm

EXACT_ARM = ArmKind.EXACT.value
FALLBACK_ARM = ArmKind.FALLBACK.value


def synthesized_arm(fingerprint: str) -> str:
    """Arm name for the synthesized workflow deployed under a fingerprint."""
    return f"{ArmKind.SYNTHESIZED.value}:{fingerprint}"


def arm_kind(arm: str) -> ArmKind:
    """Family of an arm name (``synthesized:abc`` -> SYNTHESIZED)."""
    return ArmKind(arm.split(":", 1)[0])


def arm_fingerprint(arm: str) -> str | None:
    """Fingerprint encoded in a synthesized arm name, else None."""
    if arm_kind(arm) is not ArmKind.SYNTHESIZED:
        return None
    return arm.split(":", 1)[1]


@dataclass(frozen=True, slots=True)
class BetaPosterior:
    """Beta(alpha, beta) posterior over an arm's success probability."""

    alpha: float
    beta: float

    def __post_init__(self) -> None:
        if self.alpha <= 0 or self.beta <= 0:
            raise ValueError(f"Beta parameters must be positive, got alpha={self.alpha}, beta={self.beta}")

    @property
    def mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)

    @property
    def variance(self) -> float:
        total = self.alpha + self.beta
        return (self.alpha * self.beta) / (total * total * (total + 1))

    def observe(self, success: bool) -> BetaPosterior:
        if success:
            return BetaPosterior(alpha=self.alpha + 1, beta=self.beta)
        return BetaPosterior(alpha=self.alpha, beta=self.beta + 1)

    def to_dict(self) -> dict[str, float]:
        return {"alpha": self.alpha, "beta": self.beta}


@dataclass(frozen=True, slots=True)
class RoutingArmStats:
    """Per-query-pattern arm posteriors in registration order.

    arms is a tuple of (arm_name, posterior) pairs; its order is the
    deterministic tie-break order for selection.
    """

    query_pattern: str
    arms: tuple[tuple[str, BetaPosterior], ...] = ()
    version: int = 0
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "arms", tuple(self.arms))
        names = [name for name, _ in self.arms]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate arm names for {self.query_pattern!r}: {names}")

    @property
    def arm_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.arms)

    def has_arm(self, arm: str) -> bool:
        return arm in self.arm_names

    def posterior(self, arm: str) -> BetaPosterior:
        for name, posterior in self.arms:
            if name == arm:
                return posterior
        raise UnknownArm(self.query_pattern, arm)

    def with_arm(self, arm: str, prior: BetaPosterior) -> RoutingArmStats:
        """Register a new arm at the prior. Existing arms are untouched."""
        if self.has_arm(arm):
            return self
        return replace(
            self,
            arms=(*self.arms, (arm, prior)),
            version=self.version + 1,
            updated_at=datetime.now(UTC),
        )

    def with_outcome(self, arm: str, success: bool) -> RoutingArmStats:
        """Increment alpha (success) or beta (failure) for one arm."""
        posterior = self.posterior(arm)
        arms = tuple((name, posterior.observe(success) if name == arm else p) for name, p in self.arms)
        return replace(self, arms=arms, version=self.version + 1, updated_at=datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "query_pattern": self.query_pattern,
            "arms": [{"arm": name, **posterior.to_dict()} for name, posterior in self.arms],
            "version": self.version,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RoutingArmStats:
        return cls(
            query_pattern=data["query_pattern"],
            arms=tuple((a["arm"], BetaPosterior(alpha=a["alpha"], beta=a["beta"])) for a in data["arms"]),
            version=data["version"],
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
