"""
cairn: Declarative resource graph for a serverless event-notices stack.

Resources are declared as typed nodes; attributes may reference other
nodes' outputs, and those references are the graph's edges. cairn plans
the diff against recorded state and converges the account to it.

Core concepts:
- ResourceNode: a declared resource with desired attributes
- Reference / Join: typed edges to another node's outputs
- Stack: the declaration, built into a validated ResourceGraph
- Reconciler: plans and applies the graph against a provider

Example:
    from cairn import Stack

    stack = Stack(name="event-notices")
    topic = stack.add("aws:sns:Topic", "notices", name="notices")
    stack.export("sns_topic_arn", topic.output("arn"))

    graph = stack.build()
"""

from cairn.core.references import NodeKey, Reference, Join, join, UNKNOWN
from cairn.core.node import ResourceNode
from cairn.core.graph import GraphBuilder, ResourceGraph
from cairn.core.stack import Stack
from cairn.errors import (
    CairnError,
    ValidationError,
    DuplicateNameError,
    CycleError,
    ProviderApplyError,
    DriftError,
)

__version__ = "0.1.0"
__all__ = [
    "NodeKey",
    "Reference",
    "Join",
    "join",
    "UNKNOWN",
    "ResourceNode",
    "GraphBuilder",
    "ResourceGraph",
    "Stack",
    # Errors
    "CairnError",
    "ValidationError",
    "DuplicateNameError",
    "CycleError",
    "ProviderApplyError",
    "DriftError",
]
