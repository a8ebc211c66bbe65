# tests/property/test_routing_properties.py
"""Property tests for router updates and request fingerprints."""

from hypothesis import given
from hypothesis import strategies as st

from tests.property.settings import DETERMINISM_SETTINGS, STANDARD_SETTINGS
from tracesmith.contracts import GuardCondition, GuardOperator
from tracesmith.core.config import RouterSettings
from tracesmith.core.fingerprint import query_pattern, request_fingerprint
from tracesmith.routing import BanditRouter
from tracesmith.store import MemoryRouterStatsStore
from tracesmith.synthesis.expressions import GuardExpression

ARMS = ("exact", "fallback", "synthesized:abc")
QUERY = "by_region_revenue_show"

outcomes = st.lists(st.tuples(st.sampled_from(ARMS), st.booleans()), max_size=30)
words = st.lists(st.from_regex(r"[a-z0-9]{1,8}", fullmatch=True), min_size=1, max_size=8)


def _apply(updates: list[tuple[str, bool]]) -> dict[str, tuple[float, float]]:
    router = BanditRouter(MemoryRouterStatsStore(), RouterSettings(seed=0))
    router.register_arm(QUERY, "synthesized:abc")
    for arm, success in updates:
        router.update(QUERY, arm, success)
    return {name: (p.alpha, p.beta) for name, p in router.stats(QUERY).arms}


class TestRouterUpdateProperties:
    @given(updates=outcomes, data=st.data())
    @STANDARD_SETTINGS
    def test_updates_commute(self, updates: list[tuple[str, bool]], data: st.DataObject) -> None:
        shuffled = data.draw(st.permutations(updates))
        assert _apply(updates) == _apply(shuffled)

    @given(updates=outcomes)
    @STANDARD_SETTINGS
    def test_counts_match_outcomes(self, updates: list[tuple[str, bool]]) -> None:
        final = _apply(updates)
        for arm in ARMS:
            successes = sum(1 for a, ok in updates if a == arm and ok)
            failures = sum(1 for a, ok in updates if a == arm and not ok)
            assert final[arm] == (1.0 + successes, 1.0 + failures)


class TestFingerprintProperties:
    @given(tokens=words, data=st.data())
    @DETERMINISM_SETTINGS
    def test_word_order_invariant(self, tokens: list[str], data: st.DataObject) -> None:
        shuffled = data.draw(st.permutations(tokens))
        assert request_fingerprint(" ".join(tokens)) == request_fingerprint(" ".join(shuffled))
        assert query_pattern(" ".join(tokens)) == query_pattern(" ".join(shuffled))

    @given(tokens=words)
    @DETERMINISM_SETTINGS
    def test_case_and_punctuation_invariant(self, tokens: list[str]) -> None:
        plain = " ".join(tokens)
        noisy = "  ".join(f"{t.upper()}," for t in tokens) + "?"
        assert request_fingerprint(plain) == request_fingerprint(noisy)


class TestGuardProperties:
    @given(
        field=st.from_regex(r"[a-z][a-z_]{0,10}", fullmatch=True),
        value=st.one_of(st.integers(min_value=-10**6, max_value=10**6), st.from_regex(r"[a-z ]{0,12}", fullmatch=True)),
        operator=st.sampled_from(list(GuardOperator)),
    )
    @STANDARD_SETTINGS
    def test_mined_guard_expressions_parse_and_hold(self, field: str, value: object, operator: GuardOperator) -> None:
        if operator is not GuardOperator.EQ and not isinstance(value, int):
            operator = GuardOperator.EQ
        guard = GuardCondition(position=0, option="x", field=field, operator=operator, value=value, score=1.0)
        assert GuardExpression(guard.expression).evaluate({field: value})
