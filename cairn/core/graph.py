"""
Graph builder: turns a declared node set into a validated dependency graph.

All checks here run before any provider call. A declaration that fails
them is never partially applied.
"""

import re
from collections import Counter
from typing import Any, Iterator

import structlog

from cairn.core.dag import DAG
from cairn.core.node import ResourceNode
from cairn.core.policy import parse_policy
from cairn.core.references import NodeKey, Reference, iter_references
from cairn.errors import DuplicateNameError, ValidationError
from cairn.resources.types import get_resource_type

logger = structlog.get_logger(__name__)

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class ResourceGraph:
    """
    A validated resource graph.

    Wraps a DAG keyed by str(NodeKey). Nodes come back in dependency order
    from `order()`; `levels()` groups nodes that can be applied together.
    """

    def __init__(self, nodes: list[ResourceNode], dag: DAG, outputs: dict[str, Any]):
        self._nodes = {str(node.key): node for node in nodes}
        self.dag = dag
        self.outputs = outputs
        self._order = dag.topological_sort()

    def order(self) -> list[ResourceNode]:
        """Nodes in an order where every producer precedes its consumers."""
        return [self._nodes[key] for key in self._order]

    def levels(self) -> list[list[ResourceNode]]:
        """Groups of mutually independent nodes, in apply order."""
        return [[self._nodes[key] for key in level] for level in self.dag.get_execution_levels()]

    def get(self, key: NodeKey | str) -> ResourceNode | None:
        return self._nodes.get(str(key))

    def keys(self) -> list[str]:
        return list(self._order)

    def dependencies(self, key: NodeKey | str) -> list[str]:
        return self.dag.get_dependencies(str(key))

    def descendants(self, key: NodeKey | str) -> list[str]:
        return self.dag.get_descendants(str(key))

    def __contains__(self, key: object) -> bool:
        return str(key) in self._nodes

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self.order())

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"ResourceGraph(nodes={len(self._nodes)})"


class GraphBuilder:
    """
    Validates a declaration and builds its dependency graph.

    Raises, in this order of checking:
        DuplicateNameError: two nodes share type and name
        ValidationError: unknown type, bad name, missing attribute,
            dangling reference, unknown output, bad policy, bad binding
        CycleError: references form a cycle
    """

    def __init__(self, nodes: list[ResourceNode], outputs: dict[str, Any] | None = None):
        self.nodes = list(nodes)
        self.outputs = dict(outputs or {})

    def build(self) -> ResourceGraph:
        self._check_duplicates()
        declared = {node.key: node for node in self.nodes}

        for node in self.nodes:
            self._check_node(node, declared)

        self._check_outputs(declared)

        from cairn.resources.bindings import validate_bindings

        validate_bindings(self.nodes, declared)

        dag = DAG()
        for node in self.nodes:
            dag.add_node(str(node.key), node, metadata={"type": node.type})
        for node in self.nodes:
            for producer in node.dependencies():
                dag.add_edge(str(producer), str(node.key))

        graph = ResourceGraph(self.nodes, dag, self.outputs)
        logger.debug("graph_built", nodes=len(graph), outputs=len(self.outputs))
        return graph

    def _check_duplicates(self) -> None:
        counts = Counter(node.key for node in self.nodes)
        duplicates = [str(key) for key, count in counts.items() if count > 1]
        if duplicates:
            raise DuplicateNameError(duplicates)

    def _check_node(self, node: ResourceNode, declared: dict[NodeKey, ResourceNode]) -> None:
        key = str(node.key)

        if not _NAME_PATTERN.match(node.name):
            raise ValidationError(f"Invalid resource name {node.name!r}", [key])

        schema = get_resource_type(node.type)
        if schema is None:
            raise ValidationError(f"Unknown resource type {node.type!r}", [key])

        missing = [attr for attr in schema.required if node.attributes.get(attr) is None]
        if missing:
            raise ValidationError(f"Missing required attributes: {', '.join(missing)}", [key])

        for ref in node.references():
            self._check_reference(ref, declared, f"Reference {ref}", key)

        for dependency in node.depends_on:
            if dependency not in declared:
                raise ValidationError(
                    f"depends_on points to undeclared resource {dependency}", [key]
                )

        for attribute, kind in schema.policies.items():
            if attribute in node.attributes:
                parse_policy(node.attributes[attribute], kind, node=f"{key}.{attribute}")

    def _check_outputs(self, declared: dict[NodeKey, ResourceNode]) -> None:
        for name, value in self.outputs.items():
            for ref in iter_references(value):
                self._check_reference(ref, declared, f"Stack output {name!r}", str(ref.producer))

    def _check_reference(
        self,
        ref: Reference,
        declared: dict[NodeKey, ResourceNode],
        where: str,
        node: str,
    ) -> None:
        """The producer must be declared and its type must expose the output."""
        producer = declared.get(ref.producer)
        if producer is None:
            raise ValidationError(f"{where} points to undeclared resource {ref.producer}", [node])
        schema = get_resource_type(producer.type)
        if schema is not None and ref.output not in schema.outputs:
            raise ValidationError(f"{where}: {producer.type} has no output {ref.output!r}", [node])
