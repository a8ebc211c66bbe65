"""Thompson-sampling router over exact, synthesized, and fallback arms."""

from tracesmith.routing.router import BanditRouter
from tracesmith.routing.sampling import BetaSampler, ExactBetaSampler, GaussianBetaSampler, build_sampler

__all__ = [
    "BanditRouter",
    "BetaSampler",
    "ExactBetaSampler",
    "GaussianBetaSampler",
    "build_sampler",
]
