# src/tracesmith/synthesis/graph.py
"""WorkflowGraph: state-transition graph of a synthesized workflow.

Wraps a NetworkX DiGraph with the queries the structural verifier needs.
Edges point from a state to each of its transition targets; targets that
are not declared states still get a node (flagged declared=False) so the
verifier can report them.
"""

from __future__ import annotations

from collections.abc import Mapping

import networkx as nx
from networkx import DiGraph

from tracesmith.contracts.enums import StateKind
from tracesmith.contracts.workflows import SynthesizedWorkflow, WorkflowState


class WorkflowGraph:
    def __init__(self) -> None:
        self._graph: DiGraph[str] = nx.DiGraph()

    @classmethod
    def from_states(cls, states: Mapping[str, WorkflowState]) -> WorkflowGraph:
        graph = cls()
        for state_id, state in states.items():
            graph._graph.add_node(state_id, kind=state.kind, declared=True)
        for state_id, state in states.items():
            for target in state.targets:
                if target not in graph._graph:
                    graph._graph.add_node(target, kind=None, declared=False)
                graph._graph.add_edge(state_id, target)
        return graph

    @classmethod
    def from_workflow(cls, workflow: SynthesizedWorkflow) -> WorkflowGraph:
        return cls.from_states(workflow.states)

    @property
    def node_count(self) -> int:
        return self._graph.number_of_nodes()

    def get_nx_graph(self) -> DiGraph[str]:
        """Frozen copy of the underlying graph."""
        return nx.freeze(self._graph.copy())  # type: ignore[no-any-return]

    def declared_states(self) -> set[str]:
        return {n for n, declared in self._graph.nodes(data="declared") if declared}

    def undeclared_targets(self) -> list[str]:
        return sorted(n for n, declared in self._graph.nodes(data="declared") if not declared)

    def end_states(self) -> list[str]:
        return sorted(n for n, kind in self._graph.nodes(data="kind") if kind is StateKind.END)

    def reachable_from(self, start: str) -> set[str]:
        """start plus every node reachable from it (breadth-first)."""
        if start not in self._graph:
            return set()
        return {start, *nx.descendants(self._graph, start)}

    def find_cycle(self, source: str | None = None) -> list[tuple[str, str]] | None:
        """Edges of one cycle (reachable from source, if given), or None."""
        try:
            return [(u, v) for u, v, *_ in nx.find_cycle(self._graph, source=source)]
        except nx.NetworkXNoCycle:
            return None

    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self._graph)
