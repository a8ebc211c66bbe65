"""Pattern mining: alignment, consensus, variable regions, guards, confidence."""

from tracesmith.mining.alignment import SequenceAligner, align_pair, jaccard, task_dissimilarity
from tracesmith.mining.confidence import ConfidenceScorer, mean_node_frequency
from tracesmith.mining.consensus import ConsensusExtractor
from tracesmith.mining.guards import GuardMiner
from tracesmith.mining.miner import PatternMiner
from tracesmith.mining.performance import nearest_rank, profile_traces
from tracesmith.mining.variables import InputRegions, VariableRegionMiner

__all__ = [
    "ConfidenceScorer",
    "ConsensusExtractor",
    "GuardMiner",
    "InputRegions",
    "PatternMiner",
    "SequenceAligner",
    "VariableRegionMiner",
    "align_pair",
    "jaccard",
    "mean_node_frequency",
    "nearest_rank",
    "profile_traces",
    "task_dissimilarity",
]
