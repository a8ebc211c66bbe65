"""Confidence scoring for consensus patterns."""

from __future__ import annotations

from collections.abc import Sequence

from tracesmith.contracts.patterns import BranchNode, PatternNode


def node_frequency(node: PatternNode) -> float:
    if isinstance(node, BranchNode):
        return node.top_frequency
    return node.frequency


def mean_node_frequency(nodes: Sequence[PatternNode]) -> float:
    if not nodes:
        return 0.0
    return sum(node_frequency(node) for node in nodes) / len(nodes)


class ConfidenceScorer:
    """Weighted blend of alignment quality, consensus strength and sample size.

    The sample term saturates: 1 - 0.5 ** (trace_count / min_traces) is
    0.5 at the minimum and approaches 1 as more traces arrive. Every term is
    non-decreasing in its input, so the score is too.
    """

    def __init__(
        self,
        *,
        min_traces: int = 3,
        alignment_weight: float = 0.4,
        consensus_weight: float = 0.4,
        sample_weight: float = 0.2,
    ) -> None:
        if min_traces < 1:
            raise ValueError(f"min_traces must be >= 1, got {min_traces}")
        self._min_traces = min_traces
        self._alignment_weight = alignment_weight
        self._consensus_weight = consensus_weight
        self._sample_weight = sample_weight

    def sample_factor(self, trace_count: int) -> float:
        return 1.0 - 0.5 ** (max(trace_count, 0) / self._min_traces)

    def score(self, *, alignment_score: float, consensus_frequency: float, trace_count: int) -> float:
        raw = (
            self._alignment_weight * alignment_score
            + self._consensus_weight * consensus_frequency
            + self._sample_weight * self.sample_factor(trace_count)
        )
        return min(1.0, max(0.0, raw))

    def score_nodes(self, *, alignment_score: float, nodes: Sequence[PatternNode], trace_count: int) -> float:
        return self.score(
            alignment_score=alignment_score,
            consensus_frequency=mean_node_frequency(nodes),
            trace_count=trace_count,
        )
