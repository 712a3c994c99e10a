"""
Stack: Container for all declared resources in a cairn deployment.

A Stack collects resource nodes and public outputs. Building it validates
the declaration and returns the dependency graph the planner and the
compilers work from.
"""

from typing import TYPE_CHECKING, Any
from dataclasses import dataclass, field

from cairn.core.node import ResourceNode
from cairn.core.references import NodeKey

if TYPE_CHECKING:
    from cairn.core.graph import ResourceGraph


@dataclass
class Stack:
    """
    Container for all resources in a deployment.

    Example:
        stack = Stack(name="event-notices", region="us-east-1")

        topic = stack.add("aws:sns:Topic", "notices", name="notices")
        stack.export("sns_topic_arn", topic.output("arn"))

        graph = stack.build()
    """

    name: str
    """Stack name"""

    region: str = "us-east-1"
    """Region every resource is declared in"""

    tags: dict[str, str] = field(default_factory=dict)
    """Tags merged into every taggable resource by the declaring code"""

    _nodes: list[ResourceNode] = field(default_factory=list)
    """Declared nodes, in declaration order"""

    _outputs: dict[str, Any] = field(default_factory=dict)
    """Public stack outputs"""

    def add(
        self,
        type: str,
        name: str,
        /,
        depends_on: list[ResourceNode] | None = None,
        **attributes: Any,
    ) -> ResourceNode:
        """
        Declare a resource in this stack.

        Duplicates are not rejected here; the graph builder reports every
        duplicate at once when the stack is built.

        Args:
            type: Resource type token (e.g. "aws:sns:Topic")
            name: Logical name, unique per type
                (positional, so resources can still take a `name` attribute)
            depends_on: Explicit ordering dependencies with no data flow
            **attributes: Desired attributes; may contain References

        Returns:
            The declared ResourceNode
        """
        node = ResourceNode(
            type=type,
            name=name,
            attributes=attributes,
            depends_on=[dep.key for dep in depends_on or []],
        )
        self._nodes.append(node)
        return node

    def add_node(self, node: ResourceNode) -> ResourceNode:
        """Declare an already constructed node."""
        self._nodes.append(node)
        return node

    def export(self, name: str, value: Any) -> None:
        """Declare a public stack output (may contain References)."""
        self._outputs[name] = value

    def build(self) -> 'ResourceGraph':
        """
        Validate the declaration and build its dependency graph.

        Raises:
            DuplicateNameError, ValidationError, CycleError
        """
        from cairn.core.graph import GraphBuilder

        return GraphBuilder(self._nodes, self._outputs).build()

    def get(self, type: str, name: str) -> ResourceNode | None:
        """Get a declared node by type and name."""
        key = NodeKey(type, name)
        for node in self._nodes:
            if node.key == key:
                return node
        return None

    def list_resources(self) -> list[str]:
        """List all declared node keys."""
        return [str(node.key) for node in self._nodes]

    def list_outputs(self) -> list[str]:
        """List all public output names."""
        return list(self._outputs.keys())

    @property
    def nodes(self) -> list[ResourceNode]:
        return list(self._nodes)

    @property
    def outputs(self) -> dict[str, Any]:
        return dict(self._outputs)
