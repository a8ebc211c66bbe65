"""Star alignment of execution sequences.

Every trace is aligned to the first (reference) trace by edit distance
with unit insertion/deletion cost and a substitution cost equal to task
dissimilarity. Pairwise alignments are then merged into one column
layout: a task inserted relative to the reference opens a gap column in
every other sequence, so all aligned sequences share one length.
"""

from __future__ import annotations

import math
from collections.abc import Collection, Sequence
from dataclasses import dataclass

from tracesmith.contracts.patterns import GAP, AlignedSequenceSet, AlignedTask
from tracesmith.contracts.traces import ExecutionTrace, TaskExecution

INDEL_COST = 1.0


def jaccard(left: Collection[str], right: Collection[str]) -> float:
    """Jaccard similarity of two key sets. Two empty sets score 0."""
    union = set(left) | set(right)
    if not union:
        return 0.0
    return len(set(left) & set(right)) / len(union)


def task_dissimilarity(a: TaskExecution, b: TaskExecution) -> float:
    """Substitution cost between two tasks, in [0, 1].

    0 when names match; otherwise 1 - mean(Jaccard of input schema keys,
    Jaccard of output schema keys).
    """
    if a.name == b.name:
        return 0.0
    input_similarity = jaccard(a.input_schema.keys(), b.input_schema.keys())
    output_similarity = jaccard(a.output_schema.keys(), b.output_schema.keys())
    return 1.0 - (input_similarity + output_similarity) / 2


@dataclass(frozen=True, slots=True)
class PairwiseAlignment:
    """Alignment of one sequence against the reference.

    columns holds (reference index or None, other task or None) pairs in
    order. A None reference index is an insertion; a None task is a
    deletion (gap in the other sequence).
    """

    columns: tuple[tuple[int | None, TaskExecution | None], ...]
    distance: float
    score: float

    def insertions_before(self, reference_length: int) -> list[list[TaskExecution]]:
        """Inserted tasks grouped by the reference position they precede.

        Index reference_length collects insertions after the last
        reference task.
        """
        groups: list[list[TaskExecution]] = [[] for _ in range(reference_length + 1)]
        next_ref = 0
        for ref_index, task in self.columns:
            if ref_index is None:
                assert task is not None
                groups[next_ref].append(task)
            else:
                next_ref = ref_index + 1
        return groups

    def matched(self, reference_length: int) -> list[TaskExecution | None]:
        """Task aligned to each reference position (None = deleted)."""
        matched: list[TaskExecution | None] = [GAP] * reference_length
        for ref_index, task in self.columns:
            if ref_index is not None:
                matched[ref_index] = task
        return matched


def align_pair(reference: Sequence[TaskExecution], other: Sequence[TaskExecution]) -> PairwiseAlignment:
    """Edit-distance alignment of ``other`` against ``reference``.

    Backtracking prefers match/substitution, then deletion, then
    insertion, so equal-cost alignments are resolved the same way every
    time.
    """
    m, n = len(reference), len(other)
    cost = [[0.0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        cost[i][0] = i * INDEL_COST
    for j in range(1, n + 1):
        cost[0][j] = j * INDEL_COST

    for i in range(1, m + 1):
        for j in range(1, n + 1):
            cost[i][j] = min(
                cost[i - 1][j] + INDEL_COST,
                cost[i][j - 1] + INDEL_COST,
                cost[i - 1][j - 1] + task_dissimilarity(reference[i - 1], other[j - 1]),
            )

    columns: list[tuple[int | None, TaskExecution | None]] = []
    i, j = m, n
    while i > 0 or j > 0:
        if i > 0 and j > 0 and math.isclose(
            cost[i][j],
            cost[i - 1][j - 1] + task_dissimilarity(reference[i - 1], other[j - 1]),
            abs_tol=1e-9,
        ):
            columns.append((i - 1, other[j - 1]))
            i, j = i - 1, j - 1
        elif i > 0 and math.isclose(cost[i][j], cost[i - 1][j] + INDEL_COST, abs_tol=1e-9):
            columns.append((i - 1, GAP))
            i -= 1
        else:
            columns.append((None, other[j - 1]))
            j -= 1
    columns.reverse()

    distance = cost[m][n]
    longest = max(m, n)
    score = 1.0 if longest == 0 else min(1.0, max(0.0, 1.0 - distance / longest))
    return PairwiseAlignment(columns=tuple(columns), distance=distance, score=score)


class SequenceAligner:
    """Aligns traces sharing a fingerprint to a common length.

    Example:
        aligned = SequenceAligner().align(traces)
        aligned.score       # mean pairwise score against traces[0]
        aligned.sequences   # equal-length tuples, None = gap
    """

    def align(self, traces: Sequence[ExecutionTrace]) -> AlignedSequenceSet:
        if not traces:
            raise ValueError("Cannot align an empty trace set")

        reference = traces[0].tasks
        pairs = [align_pair(reference, trace.tasks) for trace in traces[1:]]

        # Widest insertion run before each reference position, over all pairs.
        slots = [0] * (len(reference) + 1)
        grouped = [pair.insertions_before(len(reference)) for pair in pairs]
        for groups in grouped:
            for k, inserted in enumerate(groups):
                slots[k] = max(slots[k], len(inserted))

        sequences = [self._layout(list(reference), [[] for _ in slots], slots)]
        for pair, groups in zip(pairs, grouped, strict=True):
            sequences.append(self._layout(pair.matched(len(reference)), groups, slots))

        pairwise_scores = tuple(pair.score for pair in pairs)
        score = sum(pairwise_scores) / len(pairwise_scores) if pairwise_scores else 1.0

        return AlignedSequenceSet(
            traces=tuple(traces),
            sequences=tuple(sequences),
            pairwise_scores=pairwise_scores,
            score=score,
        )

    @staticmethod
    def _layout(
        matched: list[TaskExecution | None],
        insertions: list[list[TaskExecution]],
        slots: list[int],
    ) -> tuple[AlignedTask, ...]:
        row: list[AlignedTask] = []
        for k, width in enumerate(slots):
            inserted = insertions[k]
            row.extend(inserted)
            row.extend([GAP] * (width - len(inserted)))
            if k < len(matched):
                row.append(matched[k])
        return tuple(row)
