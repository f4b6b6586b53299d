"""
Command Module

This module contains the helpers used to run external commands, inside and
outside the chroot, and to wait for device nodes to settle.
"""

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from rich.console import Console

from zfsinstall.config import UDEVADM_SETTLE_TIMEOUT

# Initialize a rich console for colored output
console = Console()

logger = logging.getLogger(__name__)


def _format_command(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(token) for token in command)


def run_command(command: List[str], input_text: Optional[str] = None,
                check: bool = True, env: Optional[Dict[str, str]] = None) -> str:
    """
    Run a command and return its output.

    Args:
        command: Command to run as a list of strings
        input_text: Text sent to the command's standard input; never logged
        check: Raise on a non-zero exit code
        env: Variables added to the inherited environment

    Returns:
        str: Command output

    Raises:
        subprocess.CalledProcessError: If the command fails and `check` is set
    """
    logger.info("CMD %s", _format_command(command))

    result = subprocess.run(
        command,
        input=input_text,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=dict(os.environ, **env) if env else None
    )

    if result.stdout:
        logger.debug("STDOUT %s", result.stdout.strip())
    if result.stderr:
        logger.debug("STDERR %s", result.stderr.strip())

    if check and result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, command,
                                            result.stdout, result.stderr)
    return result.stdout


def run_chroot_command(root_path: str, command: List[str]) -> str:
    """Run a command in a chroot environment."""
    return run_command(["chroot", root_path] + command)


def chroot_shell(root_path: str, script: str) -> str:
    """Run a shell snippet in a chroot environment, so that paths resolve inside the jail."""
    return run_chroot_command(root_path, ["bash", "-c", script])


def is_mountpoint(path: str) -> bool:
    """Tell whether a directory is a mountpoint."""
    result = subprocess.run(["mountpoint", "-q", path],
                            stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    return result.returncode == 0


@dataclass
class SettlePolicy:
    """
    Bounded wait for device nodes after a partition table change.

    The partition symlinks are not created immediately, and it's not clear
    which exact event to wait on; `udevadm settle` is attempted first, then
    the paths are polled.
    """
    timeout: int = UDEVADM_SETTLE_TIMEOUT
    attempts: int = 20
    interval: float = 0.5
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    exists: Callable[[str], bool] = field(default=os.path.exists, repr=False)


def udev_settle(policy: SettlePolicy, paths: Sequence[str] = ()) -> bool:
    """
    Wait for udev to process the pending events and for the given paths to appear.

    Args:
        policy: Timeouts and polling behavior
        paths: Device paths expected to exist afterwards

    Returns:
        bool: True if every path exists, False if the wait timed out
    """
    try:
        run_command(["udevadm", "settle", "--timeout", str(policy.timeout)])
    except subprocess.CalledProcessError as e:
        console.print(
            f"[bold yellow]Warning:[/bold yellow] udevadm settle didn't complete (exit code {e.returncode}); continuing.")

    for _ in range(policy.attempts):
        missing = [path for path in paths if not policy.exists(path)]
        if not missing:
            return True
        policy.sleep(policy.interval)

    missing = [path for path in paths if not policy.exists(path)]
    if missing:
        console.print(
            f"[bold yellow]Warning:[/bold yellow] Device paths not available after waiting: {', '.join(missing)}")
        logger.warning("Settle wait timed out; missing: %s", missing)
        return False
    return True
