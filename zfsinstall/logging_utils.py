"""
Logging Module

This module sets up the install transcript and stores the diagnostic logs
(OS information, running processes, ZFS module version). The logs are never
read back by the installer.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import psutil
from rich.console import Console

from zfsinstall import config

# Initialize a rich console for colored output
console = Console()

logger = logging.getLogger(__name__)

# Path of the active install transcript, once configured
_transcript_path: Optional[str] = None


def activate_debug(log_path: str = config.INSTALL_LOG, level: int = logging.DEBUG) -> str:
    """
    Configure the install transcript.

    Every external command is written to the transcript; secrets never are.

    Args:
        log_path: Path of the transcript file
        level: Logging level of the root logger

    Returns:
        str: The transcript path
    """
    global _transcript_path
    if _transcript_path is not None:
        return _transcript_path

    Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    ))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level)

    _transcript_path = log_path

    logger.info("Install transcript: %s", log_path)
    return log_path


def print_step_info_header(step: str) -> None:
    """Mark the beginning of a procedure step on the console and in the transcript."""
    logger.info("##### %s", step)
    console.rule(f"[bold blue]{step}[/bold blue]")


def write_log(path: str, content: str, append: bool = False) -> None:
    """Write a diagnostic log file, creating its directory if needed."""
    Path(os.path.dirname(path) or ".").mkdir(parents=True, exist_ok=True)
    with open(path, "a" if append else "w") as f:
        f.write(content)


def parent_desktop_environment() -> str:
    """
    Return the `XDG_CURRENT_DESKTOP` entry of the parent process, if any.

    The user is expected to run the installer via `sudo`, which drops the
    variable; the parent (the user's shell) still has it. Not available when
    running via SSH.
    """
    try:
        environ = psutil.Process(os.getppid()).environ()
    except (psutil.Error, OSError):
        return ""

    desktop = environ.get("XDG_CURRENT_DESKTOP")
    return f"XDG_CURRENT_DESKTOP={desktop}\n" if desktop else ""


def store_running_processes(path: str = config.RUNNING_PROCESSES_LOG) -> None:
    """
    Store a snapshot of the running processes.

    Simplest and most solid way to gather the desktop environment.
    """
    lines = []
    for process in psutil.process_iter(["pid", "ppid", "name", "cmdline"]):
        info = process.info
        cmdline = " ".join(info.get("cmdline") or []) or info.get("name") or ""
        lines.append(f"{info['pid']:>7} {info.get('ppid') or 0:>7} {cmdline}")

    write_log(path, "    PID    PPID COMMAND\n" + "\n".join(lines) + "\n")
