# tests/unit/routing/test_sampling.py
"""Tests for Beta posterior samplers."""

from tracesmith.contracts import BetaPosterior, SamplerKind
from tracesmith.core.config import RouterSettings
from tracesmith.routing import ExactBetaSampler, GaussianBetaSampler, build_sampler


class TestExactBetaSampler:
    def test_seeded_draws_repeat(self) -> None:
        posterior = BetaPosterior(alpha=2.0, beta=5.0)
        first = ExactBetaSampler(seed=7)
        second = ExactBetaSampler(seed=7)
        assert [first.sample(posterior) for _ in range(20)] == [second.sample(posterior) for _ in range(20)]

    def test_draws_in_unit_interval(self) -> None:
        sampler = ExactBetaSampler(seed=1)
        draws = [sampler.sample(BetaPosterior(alpha=0.5, beta=0.5)) for _ in range(200)]
        assert all(0.0 <= d <= 1.0 for d in draws)

    def test_mean_tracks_posterior(self) -> None:
        sampler = ExactBetaSampler(seed=3)
        posterior = BetaPosterior(alpha=30.0, beta=10.0)
        draws = [sampler.sample(posterior) for _ in range(2000)]
        assert abs(sum(draws) / len(draws) - posterior.mean) < 0.02


class TestGaussianBetaSampler:
    def test_clipped_to_unit_interval(self) -> None:
        sampler = GaussianBetaSampler(seed=5)
        draws = [sampler.sample(BetaPosterior(alpha=1.0, beta=1.0)) for _ in range(500)]
        assert min(draws) >= 0.0
        assert max(draws) <= 1.0

    def test_seeded_draws_repeat(self) -> None:
        posterior = BetaPosterior(alpha=40.0, beta=60.0)
        assert GaussianBetaSampler(seed=9).sample(posterior) == GaussianBetaSampler(seed=9).sample(posterior)


class TestBuildSampler:
    def test_exact_by_default(self) -> None:
        assert isinstance(build_sampler(RouterSettings()), ExactBetaSampler)

    def test_gaussian(self) -> None:
        assert isinstance(build_sampler(RouterSettings(sampler=SamplerKind.GAUSSIAN)), GaussianBetaSampler)
