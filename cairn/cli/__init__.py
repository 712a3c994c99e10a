"""CLI utilities for cairn stacks."""

from cairn.cli.deploy import DeploymentCLI

__all__ = [
    "DeploymentCLI",
]
