# src/tracesmith/mining/miner.py
"""PatternMiner: traces of one fingerprint in, ConsensusPattern out.

Stages run strictly in order: align, extract consensus, mine variable
regions and guards, score confidence. Each gate raises the matching
mining error so the caller can record why a fingerprint produced nothing.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

import structlog

from tracesmith.contracts.errors import AlignmentBelowThreshold, InsufficientData, LowConfidence
from tracesmith.contracts.patterns import ConsensusPattern
from tracesmith.contracts.traces import ExecutionTrace
from tracesmith.core.config import ConfidenceSettings, MiningSettings
from tracesmith.mining.alignment import SequenceAligner
from tracesmith.mining.confidence import ConfidenceScorer
from tracesmith.mining.consensus import ConsensusExtractor, at_least
from tracesmith.mining.guards import GuardMiner
from tracesmith.mining.performance import profile_traces
from tracesmith.mining.variables import VariableRegionMiner

slog = structlog.get_logger(__name__)


class PatternMiner:
    """Mines a consensus pattern from one fingerprint's successful traces.

    Example:
        miner = PatternMiner(settings.mining, settings.confidence)
        pattern = miner.mine("3f2a9c0d11e4b7a5", traces)
    """

    def __init__(
        self,
        mining: MiningSettings | None = None,
        confidence: ConfidenceSettings | None = None,
    ) -> None:
        self._mining = mining or MiningSettings()
        self._confidence = confidence or ConfidenceSettings()
        self._aligner = SequenceAligner()
        self._consensus = ConsensusExtractor(
            consensus_threshold=self._mining.consensus_threshold,
            required_threshold=self._mining.required_threshold,
        )
        self._variables = VariableRegionMiner()
        self._guards = GuardMiner()
        self._scorer = ConfidenceScorer(
            min_traces=self._mining.min_traces,
            alignment_weight=self._confidence.alignment_weight,
            consensus_weight=self._confidence.consensus_weight,
            sample_weight=self._confidence.sample_weight,
        )

    def mine(self, fingerprint: str, traces: Sequence[ExecutionTrace]) -> ConsensusPattern:
        """Run the mining stages.

        Raises:
            InsufficientData: Fewer than min_traces traces
            AlignmentBelowThreshold: Traces too dissimilar
            LowConfidence: Pattern below the confidence threshold
        """
        if len(traces) < self._mining.min_traces:
            raise InsufficientData(fingerprint, len(traces), self._mining.min_traces)

        aligned = self._aligner.align(traces)
        if aligned.score < self._mining.alignment_threshold:
            raise AlignmentBelowThreshold(fingerprint, aligned.score, self._mining.alignment_threshold)

        nodes = self._consensus.extract(aligned)
        regions = self._variables.mine(aligned, nodes)
        guard_conditions = self._guards.mine(aligned, nodes)
        confidence = self._scorer.score_nodes(alignment_score=aligned.score, nodes=nodes, trace_count=len(traces))

        slog.debug(
            "pattern_scored",
            fingerprint=fingerprint,
            alignment_score=aligned.score,
            node_count=len(nodes),
            confidence=confidence,
        )

        if not at_least(confidence, self._confidence.threshold):
            raise LowConfidence(fingerprint, confidence, self._confidence.threshold)

        return ConsensusPattern(
            pattern_id=uuid.uuid4().hex,
            fingerprint=fingerprint,
            query=traces[0].query,
            nodes=nodes,
            variable_regions=regions.variables,
            guard_conditions=guard_conditions,
            confidence=confidence,
            trace_count=len(traces),
            alignment_score=aligned.score,
            performance=profile_traces(traces),
            constant_inputs=regions.constants,
        )
