"""
Exit Operations Module

This module contains the teardown of the installation: unmounting the
virtual filesystems of the jail and exporting the pools.
"""

import time
from typing import Callable, List

from rich.console import Console

from zfsinstall.command import is_mountpoint, run_command
from zfsinstall.config import UNMOUNT_WAIT, ZFS_MOUNT_DIR

# Initialize a rich console for colored output
console = Console()

UNMOUNT_ORDER = ["dev", "sys", "proc"]
POLL_INTERVAL = 0.5


def _unmount(path: str) -> None:
    run_command(["umount", "--recursive", "--force", "--lazy", path], check=False)


def prepare_for_system_exit(mount_dir: str = ZFS_MOUNT_DIR,
                            max_wait: float = UNMOUNT_WAIT,
                            sleep: Callable[[float], None] = time.sleep,
                            clock: Callable[[], float] = time.monotonic,
                            mounted: Callable[[str], bool] = is_mountpoint) -> List[str]:
    """
    Unmount the virtual filesystems of the jail, then export all the pools.

    Bind mounts don't always go away on the first attempt; after waiting,
    the unmount is re-issued once for those still present. The pools are
    exported in any case.

    Args:
        mount_dir: Root of the jail
        max_wait: Seconds to wait for the unmounts to complete
        sleep: Sleep function
        clock: Monotonic clock
        mounted: Mountpoint test

    Returns:
        List[str]: Directories for which the unmount was re-issued
    """
    directories = [f"{mount_dir.rstrip('/')}/{name}" for name in UNMOUNT_ORDER]

    for directory in directories:
        _unmount(directory)

    console.print("Waiting for virtual filesystems to unmount...")

    started = clock()
    for directory in directories:
        while mounted(directory) and clock() - started < max_wait:
            sleep(POLL_INTERVAL)

    reissued = []
    for directory in directories:
        if mounted(directory):
            console.print(f"Re-issuing umount for {directory}")
            _unmount(directory)
            reissued.append(directory)

    run_command(["zpool", "export", "-a"])

    return reissued
