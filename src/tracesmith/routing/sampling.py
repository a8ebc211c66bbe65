"""Beta posterior samplers for Thompson sampling."""

from __future__ import annotations

import math
import threading
from typing import Protocol

import numpy as np

from tracesmith.contracts.enums import SamplerKind
from tracesmith.contracts.routing import BetaPosterior
from tracesmith.core.config import RouterSettings


class BetaSampler(Protocol):
    def sample(self, posterior: BetaPosterior) -> float: ...


class ExactBetaSampler:
    """Draws from Beta(alpha, beta) with numpy's Generator.

    numpy Generators are not thread-safe, so draws are serialized.
    """

    def __init__(self, seed: int | None = None) -> None:
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    def sample(self, posterior: BetaPosterior) -> float:
        with self._lock:
            return float(self._rng.beta(posterior.alpha, posterior.beta))


class GaussianBetaSampler:
    """Moment-matched normal approximation, clipped to [0, 1].

    Cheaper than exact draws and close for large alpha + beta; biased for
    small counts, which is why it is not the default.
    """

    def __init__(self, seed: int | None = None) -> None:
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    def sample(self, posterior: BetaPosterior) -> float:
        with self._lock:
            draw = float(self._rng.normal(posterior.mean, math.sqrt(posterior.variance)))
        return min(1.0, max(0.0, draw))


def build_sampler(settings: RouterSettings) -> BetaSampler:
    if settings.sampler is SamplerKind.GAUSSIAN:
        return GaussianBetaSampler(settings.seed)
    return ExactBetaSampler(settings.seed)
