"""
tracesmith: compile recurring agent executions into verified workflows.

Mines execution traces of an expensive decision process, synthesizes
deterministic workflows from their consensus, and routes requests
between exact matches, synthesized workflows, and the fallback oracle
with a Thompson-sampling bandit.
"""

__version__ = "0.1.0"
