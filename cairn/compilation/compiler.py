"""
Compiler: resource graph compilation to deployable infrastructure.

A compiler turns a validated ResourceGraph into resources registered with
an IaC engine. The local engine does not need one; the Pulumi compiler
targets a real account.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, TypedDict

from cairn.core.graph import ResourceGraph


class StackMetadata(TypedDict, total=False):
    """Metadata about stack compilation."""
    resource_count: int
    output_count: int
    region: str
    project: str


@dataclass
class CompiledStack:
    """
    Represents a compiled stack.

    `resources` maps node keys ("type.name") to the engine's resource
    objects; `outputs` maps public output names to engine output values.
    """

    stack_name: str
    resources: dict[str, Any]
    outputs: dict[str, Any] = field(default_factory=dict)
    metadata: StackMetadata = field(default_factory=dict)

    def get_resource(self, key: str) -> Any | None:
        """Get a compiled resource by node key."""
        return self.resources.get(key)

    def get_resources_by_type(self) -> dict[str, list[str]]:
        """Group node keys by resource type token."""
        by_type: dict[str, list[str]] = {}
        for key in self.resources:
            type_token = key.partition(".")[0]
            by_type.setdefault(type_token, []).append(key)
        return by_type

    def export_outputs(self) -> dict[str, Any]:
        """Register the public outputs as Pulumi stack outputs."""
        import pulumi

        for name, value in self.outputs.items():
            pulumi.export(name, value)
        return dict(self.outputs)


class Compiler(ABC):
    """
    Abstract compiler interface.

    Example:
        compiled = PulumiCompiler().compile(stack.build(), stack_name="event-notices")
        compiled.export_outputs()
    """

    @abstractmethod
    def compile(self, graph: ResourceGraph, stack_name: str) -> CompiledStack:
        """
        Compile a resource graph to infrastructure definitions.

        Args:
            graph: Validated resource graph
            stack_name: Name recorded on the compiled stack

        Returns:
            CompiledStack with infrastructure definitions

        Raises:
            CompilationError: If compilation fails
        """
        pass
