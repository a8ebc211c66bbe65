"""Majority-vote consensus over aligned positions."""

from __future__ import annotations

import math

from tracesmith.contracts.patterns import AlignedSequenceSet, BranchNode, PatternNode, TaskNode
from tracesmith.contracts.traces import TaskExecution


def at_least(value: float, threshold: float) -> bool:
    """value >= threshold, tolerant of float noise such as 9/10 vs 0.9."""
    return value > threshold or math.isclose(value, threshold, rel_tol=0.0, abs_tol=1e-12)


def tally(column: tuple[TaskExecution | None, ...]) -> dict[str, int]:
    """Task-name counts over the non-gap entries, in first-seen order."""
    counts: dict[str, int] = {}
    for task in column:
        if task is not None:
            counts[task.name] = counts.get(task.name, 0) + 1
    return counts


class ConsensusExtractor:
    """Turns an aligned sequence set into ordered pattern nodes.

    Args:
        consensus_threshold: Majority share among non-gap entries needed
            for a Task node
        required_threshold: Frequency over all traces at or above which a
            Task node is required
    """

    def __init__(self, consensus_threshold: float = 0.8, required_threshold: float = 0.9) -> None:
        self._consensus_threshold = consensus_threshold
        self._required_threshold = required_threshold

    def extract(self, aligned: AlignedSequenceSet) -> tuple[PatternNode, ...]:
        trace_count = len(aligned.sequences)
        nodes: list[PatternNode] = []

        for position in range(aligned.length):
            column = aligned.column(position)
            counts = tally(column)
            if not counts:
                raise ValueError(f"Aligned position {position} holds only gaps")

            non_gap = sum(counts.values())
            # max() keeps the first maximal key, so first-seen wins ties
            majority = max(counts, key=lambda name: counts[name])
            majority_count = counts[majority]

            if at_least(majority_count / non_gap, self._consensus_threshold):
                representative = next(t for t in column if t is not None and t.name == majority)
                frequency = majority_count / trace_count
                nodes.append(
                    TaskNode(
                        position=position,
                        name=majority,
                        required=at_least(frequency, self._required_threshold),
                        frequency=frequency,
                        input_schema=representative.input_schema,
                        output_schema=representative.output_schema,
                    )
                )
            else:
                nodes.append(
                    BranchNode(
                        position=position,
                        options=tuple(counts),
                        counts=counts,
                        trace_count=trace_count,
                    )
                )

        return tuple(nodes)
