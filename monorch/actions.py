"""
Per-package actions.

Any callable taking a PackageDescriptor is an action. This module provides
the two the CLI uses:
- CommandAction: run a shell command inside each package directory
- ScriptAction: run a named script from each package's manifest

Both raise ActionError on a nonzero exit or a timeout; the scheduler records
that as the package's failure.
"""

import logging
import os
import subprocess
from typing import Dict, Optional

from monorch.errors import ActionError
from monorch.schemas import PackageDescriptor

logger = logging.getLogger(__name__)

# Keep failure output readable in summaries
MAX_OUTPUT_CHARS = 4000


def _tail(text: Optional[str], limit: int = MAX_OUTPUT_CHARS) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else "..." + text[-limit:]


def package_env(descriptor: PackageDescriptor, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Environment for a package command: inherited env plus package identity."""
    env = dict(os.environ)
    env["MONORCH_PACKAGE_NAME"] = descriptor.name
    env["MONORCH_PACKAGE_VERSION"] = descriptor.version
    env["MONORCH_PACKAGE_LOCATION"] = str(descriptor.location)
    if extra:
        env.update(extra)
    return env


class CommandAction:
    """
    Run a shell command in the package directory.

    Args:
        command: Shell command line
        timeout: Seconds before the command is abandoned (None = no limit)
        env: Extra environment variables
        stream: Let output go to the terminal instead of capturing it
    """

    def __init__(
        self,
        command: str,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
        stream: bool = False,
    ):
        if not command or not command.strip():
            raise ValueError("command must be non-empty")
        self.command = command
        self.timeout = timeout
        self.env = env or {}
        self.stream = stream

    def __call__(self, descriptor: PackageDescriptor) -> str:
        return self.execute(descriptor, self.command)

    def execute(self, descriptor: PackageDescriptor, command: str) -> str:
        """
        Execute command for one package.

        Returns:
            Captured stdout (empty when streaming)

        Raises:
            ActionError: On nonzero exit or timeout
        """
        logger.debug(f"{descriptor.name}: $ {command}", extra={"package": descriptor.name})

        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=descriptor.location,
                env=package_env(descriptor, self.env),
                capture_output=not self.stream,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            output = e.stdout.decode() if isinstance(e.stdout, bytes) else e.stdout
            raise ActionError(
                descriptor.name,
                f"'{command}' timed out after {self.timeout}s",
                cause=e,
                output=_tail(output),
            )

        if result.returncode != 0:
            combined = (result.stdout or "") + (result.stderr or "")
            raise ActionError(
                descriptor.name,
                f"'{command}' exited with code {result.returncode}",
                exit_code=result.returncode,
                output=_tail(combined),
            )

        return result.stdout or ""

    def __repr__(self) -> str:
        return f"CommandAction({self.command!r})"


class ScriptAction(CommandAction):
    """
    Run a named script declared in each package's manifest.

    Packages that do not declare the script succeed as a no-op (returning
    None), unless strict is set, in which case they fail.
    """

    def __init__(
        self,
        script: str,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
        stream: bool = False,
        strict: bool = False,
    ):
        super().__init__(script, timeout=timeout, env=env, stream=stream)
        self.script = script
        self.strict = strict

    def __call__(self, descriptor: PackageDescriptor) -> Optional[str]:
        if not descriptor.has_script(self.script):
            if self.strict:
                raise ActionError(descriptor.name, f"no '{self.script}' script in manifest")
            logger.debug(f"{descriptor.name}: no '{self.script}' script, nothing to do")
            return None
        return self.execute(descriptor, descriptor.scripts[self.script])

    def __repr__(self) -> str:
        return f"ScriptAction({self.script!r})"
