#!/usr/bin/env python3
"""
Command execution utilities for the development certificate manager.

Every platform utility (``security``, ``certutil``, ``openssl``, PowerShell)
is reached through ``ProcessRunner.run`` so that platform text formats are
parsed in one place and tests can substitute a scripted runner.
"""

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from loguru import logger


@dataclass
class ProcessResult:
    """Exit code and captured output of an external command."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    command: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


class ProcessRunner:
    """
    Runs external commands synchronously.

    Args:
        timeout: Seconds to wait for a command, None waits indefinitely
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = timeout

    def run(
        self,
        executable: str,
        arguments: List[str],
        working_directory: Optional[Path] = None,
        environment: Optional[Mapping[str, str]] = None,
    ) -> ProcessResult:
        """
        Run a command and return its exit code and output.

        A command that cannot be started or exceeds the timeout is reported
        as a failed result with exit code -1 rather than raised.

        Args:
            executable: Program name or path
            arguments: Argument list, passed without a shell
            working_directory: Optional working directory
            environment: Variables overriding the inherited environment
        """
        cmd = [executable, *arguments]
        logger.debug(f"Running command: {' '.join(cmd)}")
        env = None
        if environment:
            env = os.environ.copy()
            env.update(environment)
        try:
            result = subprocess.run(
                cmd,
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                cwd=str(working_directory) if working_directory else None,
                env=env,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out after {self.timeout}s: {executable}")
            return ProcessResult(exit_code=-1, stderr="timed out", command=cmd)
        except OSError as e:
            logger.error(f"Failed to start {executable}: {e}")
            return ProcessResult(exit_code=-1, stderr=str(e), command=cmd)

        if result.returncode != 0:
            logger.debug(f"Command exited with {result.returncode}: {executable}")

        return ProcessResult(
            exit_code=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            command=cmd,
        )


def build_sdk_environment(sdk_root: Path, base_path: Optional[str] = None) -> Dict[str, str]:
    """
    Environment overrides that pin tooling to a specific SDK installation.

    The SDK root is prepended to PATH and multi-level lookup is disabled so
    invoked tools resolve to that SDK rather than a system default.
    """
    current_path = base_path if base_path is not None else os.environ.get("PATH", "")
    return {
        "PATH": f"{sdk_root}{os.pathsep}{current_path}" if current_path else str(sdk_root),
        "DOTNET_ROOT": str(sdk_root),
        "DOTNET_MULTILEVEL_LOOKUP": "0",
    }
