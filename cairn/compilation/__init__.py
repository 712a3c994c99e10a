"""
Compilation of resource graphs to deployable infrastructure.

PulumiCompiler lives in cairn.compilation.pulumi_compiler and needs the
pulumi extra installed.
"""

from cairn.compilation.compiler import (
    Compiler,
    CompiledStack,
)

__all__ = [
    "Compiler",
    "CompiledStack",
]
