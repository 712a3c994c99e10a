"""
ResourceNode: a declared resource with desired attributes.
"""

from dataclasses import dataclass, field
from typing import Any

from cairn.core.references import NodeKey, Reference, iter_references


@dataclass
class ResourceNode:
    """
    A declared resource.

    Computed outputs are not stored here. They are produced by the provider
    and recorded in the state snapshot; `output()` hands out a Reference to
    one of them.

    Example:
        topic = ResourceNode("aws:sns:Topic", "notices", {"name": "notices"})
        fn = ResourceNode(
            "aws:lambda:Function",
            "subscribers",
            {"environment": {"SNS_TOPIC_ARN": topic.output("arn")}},
        )
    """

    type: str
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    depends_on: list[NodeKey] = field(default_factory=list)

    @property
    def key(self) -> NodeKey:
        return NodeKey(self.type, self.name)

    def output(self, name: str) -> Reference:
        """Reference one of this node's computed outputs."""
        return Reference(self.key, name)

    def __getitem__(self, name: str) -> Reference:
        return self.output(name)

    def references(self) -> list[Reference]:
        """All References found in this node's attributes."""
        return [ref for value in self.attributes.values() for ref in iter_references(value)]

    def dependencies(self) -> list[NodeKey]:
        """Producer keys this node must wait for, in first-seen order."""
        seen: dict[NodeKey, None] = {}
        for ref in self.references():
            seen.setdefault(ref.producer, None)
        for key in self.depends_on:
            seen.setdefault(key, None)
        return list(seen)

    def __repr__(self) -> str:
        return f"ResourceNode({self.key})"
