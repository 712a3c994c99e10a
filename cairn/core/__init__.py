"""
Core cairn functionality.

- References: typed edges between nodes
- DAG: dependency ordering and execution levels
- GraphBuilder: validation before any provider call
"""

from cairn.core.references import NodeKey, Reference, Join, join, UNKNOWN
from cairn.core.node import ResourceNode
from cairn.core.dag import DAG, DAGNode
from cairn.core.graph import GraphBuilder, ResourceGraph
from cairn.core.stack import Stack

__all__ = [
    "NodeKey",
    "Reference",
    "Join",
    "join",
    "UNKNOWN",
    "ResourceNode",
    "DAG",
    "DAGNode",
    "GraphBuilder",
    "ResourceGraph",
    "Stack",
]
