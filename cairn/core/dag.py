"""
Dependency resolver: the DAG behind a resource graph.

Edges point from a producer to each node that consumes one of its outputs.
Ordering is Kahn's algorithm with declaration order breaking ties, so the
same declaration always yields the same order.
"""

import heapq
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from cairn.errors import CycleError


@dataclass
class DAGNode:
    """One vertex: the declared object plus its edges in both directions."""

    name: str
    resource: Any
    index: int
    """Declaration position, used to break ordering ties"""
    dependencies: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class DAG:
    """
    Producer -> consumer graph over node keys.

    Example:
        dag = DAG()
        dag.add_node("aws:sns:Topic.notices", topic)
        dag.add_node("aws:lambda:Function.subscribers", function)
        dag.add_edge("aws:sns:Topic.notices", "aws:lambda:Function.subscribers")

        dag.topological_sort()      # topic first
        dag.get_execution_levels()  # [[topic], [function]]
    """

    def __init__(self):
        self.nodes: dict[str, DAGNode] = {}

    def add_node(self, name: str, resource: Any, metadata: dict[str, Any] | None = None) -> None:
        """Register a node; re-adding an existing key is a no-op."""
        if name in self.nodes:
            return
        self.nodes[name] = DAGNode(
            name=name, resource=resource, index=len(self.nodes), metadata=metadata or {}
        )

    def add_edge(self, producer: str, consumer: str) -> None:
        """
        Record that `consumer` reads an output of `producer`.

        Raises:
            ValueError: If either node has not been added
        """
        if producer not in self.nodes or consumer not in self.nodes:
            raise ValueError(f"Cannot add edge {producer} -> {consumer}: both nodes must be added first")

        consumer_node = self.nodes[consumer]
        if producer in consumer_node.dependencies:
            return
        consumer_node.dependencies.append(producer)
        self.nodes[producer].dependents.append(consumer)

    def get_dependencies(self, name: str) -> list[str]:
        node = self.nodes.get(name)
        return list(node.dependencies) if node else []

    def get_dependents(self, name: str) -> list[str]:
        node = self.nodes.get(name)
        return list(node.dependents) if node else []

    def get_descendants(self, name: str) -> list[str]:
        """Every node that transitively consumes `name`, nearest first."""
        seen: dict[str, None] = {}
        pending = deque(self.get_dependents(name))
        while pending:
            current = pending.popleft()
            if current in seen:
                continue
            seen[current] = None
            pending.extend(self.get_dependents(current))
        return list(seen)

    def topological_sort(self) -> list[str]:
        """
        Producers before consumers; ties in declaration order.

        Raises:
            CycleError: If the graph has a cycle, naming its nodes
        """
        remaining = {name: len(node.dependencies) for name, node in self.nodes.items()}
        ready = [(node.index, name) for name, node in self.nodes.items() if not node.dependencies]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, name = heapq.heappop(ready)
            order.append(name)
            for consumer in self.nodes[name].dependents:
                remaining[consumer] -= 1
                if remaining[consumer] == 0:
                    heapq.heappush(ready, (self.nodes[consumer].index, consumer))

        if len(order) != len(self.nodes):
            cycle = self.detect_cycles()
            raise CycleError(cycle or [name for name, count in remaining.items() if count > 0])
        return order

    def detect_cycles(self) -> list[str] | None:
        """
        Find one cycle.

        Returns:
            The cycle as a path that ends on its first node, or None
        """
        WHITE, GREY, BLACK = 0, 1, 2
        colour = {name: WHITE for name in self.nodes}
        path: list[str] = []

        def visit(name: str) -> list[str] | None:
            colour[name] = GREY
            path.append(name)
            for consumer in self.nodes[name].dependents:
                if colour[consumer] == GREY:
                    return path[path.index(consumer):] + [consumer]
                if colour[consumer] == WHITE:
                    found = visit(consumer)
                    if found:
                        return found
            path.pop()
            colour[name] = BLACK
            return None

        for name in self.nodes:
            if colour[name] == WHITE:
                found = visit(name)
                if found:
                    return found
        return None

    def get_execution_levels(self) -> list[list[str]]:
        """
        Group nodes into levels that can be applied concurrently.

        A node's level is one more than its deepest producer's, so nothing
        in a level depends on anything in the same or a later level.
        """
        depth: dict[str, int] = {}
        levels: list[list[str]] = []
        for name in self.topological_sort():
            level = max((depth[dep] + 1 for dep in self.nodes[name].dependencies), default=0)
            depth[name] = level
            if level == len(levels):
                levels.append([])
            levels[level].append(name)
        return levels

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for `cairn graph --format json`."""
        return {
            "nodes": [
                {
                    "name": node.name,
                    "dependencies": list(node.dependencies),
                    "dependents": list(node.dependents),
                    "metadata": node.metadata,
                }
                for node in self.nodes.values()
            ],
            "edges": [
                {"from": producer, "to": node.name}
                for node in self.nodes.values()
                for producer in node.dependencies
            ],
        }

    def __repr__(self) -> str:
        edges = sum(len(node.dependencies) for node in self.nodes.values())
        return f"DAG(nodes={len(self.nodes)}, edges={edges})"
