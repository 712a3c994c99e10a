"""
Error taxonomy for cairn.

Declaration errors (ValidationError, DuplicateNameError, CycleError) are raised
before any provider call is made. Apply-time errors (ProviderApplyError,
DriftError) are reported per node.
"""

from typing import Any


class CairnError(Exception):
    """Base class for all cairn errors."""
    pass


class ValidationError(CairnError):
    """Raised when a declaration is malformed (bad reference, policy, binding)."""

    def __init__(self, message: str, nodes: list[str] | None = None):
        self.nodes = list(nodes or [])
        if self.nodes:
            message = f"{message} (nodes: {', '.join(self.nodes)})"
        super().__init__(message)


class DuplicateNameError(CairnError):
    """Raised when two nodes share the same type and name."""

    def __init__(self, duplicates: list[str]):
        self.duplicates = list(duplicates)
        super().__init__(
            f"Duplicate resource declarations: {', '.join(self.duplicates)}"
        )


class CycleError(CairnError):
    """Raised when references form a cycle."""

    def __init__(self, nodes: list[str]):
        self.nodes = list(nodes)
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(self.nodes)}"
        )


class ProviderApplyError(CairnError):
    """Raised when the provider rejects a create/update/delete call."""

    def __init__(self, node: str, operation: str, reason: str, object_deleted: bool = False):
        self.node = node
        self.operation = operation
        self.reason = reason
        self.object_deleted = object_deleted
        super().__init__(f"{operation} {node} failed: {reason}")


class DriftError(CairnError):
    """
    Raised when actual state diverges from the last recorded state.

    Each drift entry is a dict with the node key and a mapping of
    attribute -> (recorded, actual). A missing object is reported with
    attribute "<exists>".
    """

    def __init__(self, drifts: list[dict[str, Any]]):
        self.drifts = list(drifts)
        super().__init__(self.render())

    def render(self) -> str:
        lines = [f"Drift detected on {len(self.drifts)} resource(s):"]
        for drift in self.drifts:
            lines.append(f"  ~ {drift['node']}")
            for attribute, (recorded, actual) in drift["changes"].items():
                lines.append(f"      {attribute}: {recorded!r} => {actual!r}")
        return "\n".join(lines)


class ConfigError(CairnError):
    """Raised when cairn configuration cannot be loaded."""
    pass


class StateLockError(CairnError):
    """Raised when the state document is locked by another run."""
    pass


class StateConflictError(CairnError):
    """Raised when the state document changed since it was read."""
    pass


class CompilationError(CairnError):
    """Raised when a resource graph cannot be compiled to Pulumi resources."""
    pass


class DeploymentError(CairnError):
    """Raised when deployment fails."""
    pass
