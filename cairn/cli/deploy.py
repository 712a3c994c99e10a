"""
Deployment to a real account through the Pulumi CLI.

`cairn deploy` writes a small Pulumi program that declares the stack and
compiles it with PulumiCompiler, then drives `pulumi` against that program.
"""

import json
import subprocess
from pathlib import Path
from typing import Any

import click

from cairn.errors import DeploymentError

PROGRAM_TEMPLATE = '''\
"""Generated by cairn. Compiles the event-notices stack for Pulumi."""

import os

os.chdir({project_dir!r})

from cairn.compilation.pulumi_compiler import PulumiCompiler
from cairn.config import load_config
from cairn.stacks.notifier import declare_event_notices, default_packages

config = load_config({config_path!r})
declared = declare_event_notices(config, default_packages(config, {functions_dir!r}))
compiled = PulumiCompiler(region=config.region).compile(declared.build(), config.project)
compiled.export_outputs()
'''

PROJECT_TEMPLATE = """\
name: {project}
runtime: python
description: cairn stack {project}
"""


class DeploymentCLI:
    """
    Runs the generated Pulumi program.

    Example:
        deployer = DeploymentCLI()
        program = deployer.write_program("event-notices", ".cairn/pulumi")
        deployer.pulumi_up(program, stack="prod", yes=True)
        deployer.pulumi_stack_output(program, stack="prod")
    """

    def __init__(self, verbose: bool = True):
        self.verbose = verbose

    def write_program(
        self,
        project: str,
        output_dir: str | Path,
        config_path: str | Path | None = None,
        functions_dir: str | Path = "functions",
        project_dir: str | Path = ".",
    ) -> Path:
        """
        Write Pulumi.yaml and __main__.py for the stack.

        Args:
            project: Pulumi project name
            output_dir: Program directory to create
            config_path: cairn.yaml for the program to load (None: default lookup)
            functions_dir: Handler source root, relative to project_dir
            project_dir: Directory the program changes into before declaring

        Returns:
            The program directory
        """
        program_dir = Path(output_dir)
        program_dir.mkdir(parents=True, exist_ok=True)

        (program_dir / "Pulumi.yaml").write_text(PROJECT_TEMPLATE.format(project=project))
        (program_dir / "__main__.py").write_text(
            PROGRAM_TEMPLATE.format(
                project_dir=str(Path(project_dir).resolve()),
                config_path=str(Path(config_path).resolve()) if config_path else None,
                functions_dir=str(functions_dir),
            )
        )
        self._say(f"✓ Pulumi program written to {program_dir}")
        return program_dir

    def select_stack(self, program_dir: str | Path, stack: str) -> None:
        """Select `stack`, creating it on first use."""
        self._pulumi(program_dir, ["stack", "select", stack, "--create"], f"Selecting stack {stack}")

    def pulumi_preview(self, program_dir: str | Path, stack: str | None = None) -> subprocess.CompletedProcess:
        """Show what `pulumi up` would change."""
        return self._pulumi(program_dir, ["preview"], "Previewing changes", stack)

    def pulumi_up(
        self, program_dir: str | Path, stack: str | None = None, yes: bool = False
    ) -> subprocess.CompletedProcess:
        """Apply the program. Output is captured, so pulumi needs `yes` to proceed."""
        args = ["up", "--yes"] if yes else ["up"]
        return self._pulumi(program_dir, args, "Deploying", stack)

    def pulumi_destroy(
        self, program_dir: str | Path, stack: str | None = None, yes: bool = False
    ) -> subprocess.CompletedProcess:
        args = ["destroy", "--yes"] if yes else ["destroy"]
        return self._pulumi(program_dir, args, "Destroying", stack)

    def pulumi_stack_output(self, program_dir: str | Path, stack: str | None = None) -> dict[str, Any]:
        """
        Read the exported outputs (website_url, sns_topic_arn, api_url).

        Raises:
            DeploymentError: If pulumi fails or prints something that is not JSON
        """
        result = self._pulumi(program_dir, ["stack", "output", "--json"], "Reading outputs", stack)
        try:
            return json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise DeploymentError(f"Could not read stack outputs: {e}") from e

    def deploy_stack(
        self,
        project: str,
        output_dir: str | Path,
        config_path: str | Path | None = None,
        functions_dir: str | Path = "functions",
        stack: str = "dev",
        auto_approve: bool = False,
    ) -> dict[str, Any]:
        """
        Write the program, select the stack, preview, deploy and return outputs.

        Raises:
            DeploymentError: On the first step that fails
        """
        program_dir = self.write_program(project, output_dir, config_path, functions_dir)

        self.select_stack(program_dir, stack)
        self._banner("PREVIEW")
        self.pulumi_preview(program_dir, stack)
        if not auto_approve:
            click.confirm("\nDeploy these changes?", abort=True)
        self._banner("DEPLOY")
        self.pulumi_up(program_dir, stack, yes=True)

        outputs = self.pulumi_stack_output(program_dir, stack)
        self._say("\nOutputs:")
        for name in sorted(outputs):
            self._say(f"  {name} = {outputs[name]}")
        return outputs

    def _pulumi(
        self,
        program_dir: str | Path,
        args: list[str],
        label: str,
        stack: str | None = None,
    ) -> subprocess.CompletedProcess:
        """
        Run `pulumi <args>` inside the program directory.

        Raises:
            DeploymentError: If the directory is missing, pulumi is not on
                PATH, or the command exits non-zero
        """
        cwd = Path(program_dir)
        if not cwd.is_dir():
            raise DeploymentError(f"Pulumi program directory not found: {cwd}")

        command = ["pulumi", *args]
        if stack and args[:2] != ["stack", "select"]:
            command += ["--stack", stack]

        self._say(f"{label}: {' '.join(command)}")
        try:
            result = subprocess.run(command, cwd=cwd, check=True, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise DeploymentError("pulumi CLI not found on PATH") from e
        except subprocess.CalledProcessError as e:
            message = f"`{' '.join(command)}` exited with status {e.returncode}"
            if e.stderr:
                message += f"\n{e.stderr.strip()}"
            raise DeploymentError(message) from e

        if result.stdout and args[:2] != ["stack", "output"]:
            self._say(result.stdout.rstrip())
        return result

    def _banner(self, title: str) -> None:
        self._say(f"\n{'=' * 70}\n{title}\n{'=' * 70}")

    def _say(self, message: str) -> None:
        if self.verbose:
            click.echo(message)
