"""Standardized subprocess utilities for command execution."""

import logging
import shlex
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)


class SubprocessError(Exception):
    """Exception raised when a subprocess command fails."""

    def __init__(self, cmd: str, returncode: int, stderr: str, stdout: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(
            f"Command failed with exit code {returncode}: {cmd}\nstderr: {stderr}"
        )


def run_command(
    cmd: List[str],
    *,
    cwd: Optional[Path] = None,
    capture_output: bool = True,
    check: bool = True,
    timeout: Optional[int] = None,
    env: Optional[dict] = None,
    input: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """
    Run a command given as an argument array with standardized error handling.

    Args:
        cmd: Command and arguments
        cwd: Working directory
        capture_output: Capture stdout/stderr
        check: Raise exception on non-zero exit
        timeout: Timeout in seconds
        env: Environment variables
        input: Text fed to stdin

    Returns:
        CompletedProcess with stdout, stderr, returncode

    Raises:
        SubprocessError: If check=True and command fails
        subprocess.TimeoutExpired: If timeout exceeded
        FileNotFoundError: If the executable is not installed
    """
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture_output,
            text=True,
            timeout=timeout,
            env=env,
            input=input,
            check=False,  # We handle check ourselves for better error messages
        )

        if check and result.returncode != 0:
            raise SubprocessError(
                cmd=shlex.join(cmd),
                returncode=result.returncode,
                stderr=result.stderr or "",
                stdout=result.stdout or "",
            )

        return result

    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {shlex.join(cmd)}")
        raise


def run_git_command(
    args: List[str],
    *,
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: int = 30,
) -> subprocess.CompletedProcess:
    """
    Run a git command with standardized error handling.

    Args:
        args: Git command arguments (without 'git' prefix)
        cwd: Working directory (git repo)
        check: Raise exception on non-zero exit
        timeout: Timeout in seconds (default: 30)

    Returns:
        CompletedProcess with stdout, stderr, returncode

    Raises:
        SubprocessError: If check=True and command fails
        subprocess.TimeoutExpired: If timeout exceeded
    """
    cmd = ["git"] + args

    try:
        return run_command(
            cmd,
            cwd=cwd,
            capture_output=True,
            check=check,
            timeout=timeout,
        )
    except SubprocessError:
        logger.debug(f"Git command failed in {cwd}: {' '.join(args)}")
        raise


def run_shell_pipeline(
    stages: Sequence[Sequence[str]],
    *,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[int] = None,
) -> subprocess.CompletedProcess:
    """
    Run ``stage1 | stage2 | ...`` through a single ``bash -c`` invocation.

    This is the only place a shell is used. The pipe between the stages is
    owned by the shell so large dumps stream without buffering in Python.
    Every argument is quoted with ``shlex.quote``; ``pipefail`` makes a
    failure in any stage fail the pipeline.

    Raises:
        ValueError: If no stages were given
        SubprocessError: If the pipeline exits non-zero
    """
    if not stages:
        raise ValueError("Pipeline needs at least one stage")

    script = " | ".join(shlex.join(list(stage)) for stage in stages)
    return run_command(
        ["bash", "-o", "pipefail", "-c", script],
        cwd=cwd,
        env=env,
        timeout=timeout,
        check=True,
    )


def check_command_exists(command: str) -> bool:
    """
    Check if a command exists in PATH.

    Args:
        command: Command name to check

    Returns:
        True if command exists, False otherwise
    """
    import shutil

    return shutil.which(command) is not None
