"""
OS Operations Module

This module contains functions for OS-related operations such as running
the external OS installer against the temporary volume, and migrating the
staged installation to the ZFS root.
"""

import logging
import os
import re
import subprocess
from typing import List, Optional

import psutil
import questionary
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress

from zfsinstall.command import is_mountpoint, run_command
from zfsinstall.config import INSTALLED_OS_MOUNT_DIR, ZFS_MOUNT_DIR

# Initialize a rich console for colored output
console = Console()

logger = logging.getLogger(__name__)

RSYNC_PROGRESS_REGEX = re.compile(r"^(\d+)%$")


def display_message(message: str, no_info_messages: bool = False) -> None:
    """
    Show an informational message and wait for the user to acknowledge it.

    Args:
        message: Text to display
        no_info_messages: Skip the message entirely
    """
    if no_info_messages:
        return
    console.print(Panel(message))
    questionary.press_any_key_to_continue().ask()


class OsInstaller:
    """
    Delegate installing the OS on the temporary volume.

    After `install()` returns, the installed OS must be on the temporary
    volume; whether it's still mounted at the staging directory is not
    guaranteed.
    """

    # Swap file left by the installer under the staging directory
    swap_file = "swapfile"

    def install(self, temp_volume_device: str, staging_dir: str) -> None:
        raise NotImplementedError


class GuiInstaller(OsInstaller):
    """The Ubuntu desktop installer (Ubiquity)."""

    def __init__(self, no_info_messages: bool = False, sudo_user: Optional[str] = None):
        self.no_info_messages = no_info_messages
        self.sudo_user = sudo_user if sudo_user is not None else os.environ.get("SUDO_USER")

    def install(self, temp_volume_device: str, staging_dir: str) -> None:
        display_message(
            "The Ubuntu GUI installer will now be launched.\n\n"
            "Proceed with the configuration as usual, then, at the partitioning stage:\n\n"
            "- check `Something Else` -> `Continue`\n"
            f"- select `{temp_volume_device}` -> `Change`\n"
            "  - set `Use as:` to `Ext4`\n"
            "  - check `Format the partition:`\n"
            "  - set `Mount point` to `/` -> `OK` -> `Continue`\n"
            "- `Install Now` -> `Continue`\n"
            "- at the end, choose `Continue Testing`",
            self.no_info_messages,
        )

        # The display is restricted to its owner; allow any user to access it.
        if self.sudo_user:
            run_command(["sudo", "-u", self.sudo_user, "env", "DISPLAY=:0", "xhost", "+"])

        run_command(["ubiquity", "--no-bootloader"], env={"DISPLAY": ":0"})


class ServerInstaller(OsInstaller):
    """The Ubuntu Server installer (Subiquity), run by the user on another terminal."""

    swap_file = "swap.img"

    def install(self, temp_volume_device: str, staging_dir: str) -> None:
        console.print(Panel(
            "You'll now need to run the Ubuntu Server installer (Subiquity).\n\n"
            "Switch back to the original terminal (Alt + F1), then proceed with the configuration as usual.\n\n"
            "At the partitioning stage:\n\n"
            "- select `Custom storage layout` -> `Done`\n"
            f"- select `{temp_volume_device}` -> `Edit`\n"
            "  - set `Format:` to `ext4` (mountpoint will be automatically selected. If not, `/`.)\n"
            "  - click `Save`\n"
            "- click `Done` -> `Continue` (ignore warning)\n"
            "- follow through the installation, until the end (after the updates are applied)\n"
            "- switch back to this terminal (Alt + F2), and continue\n\n"
            "Do NOT continue in this terminal now!"
        ))
        questionary.press_any_key_to_continue(
            "Press any key once the installation has completed...").ask()


class ScriptInstaller(OsInstaller):
    """
    A user-provided installation script.

    The script receives the temporary volume device and the staging
    directory, both as arguments and as `ZFS_TEMP_VOLUME_DEVICE` and
    `ZFS_STAGING_MOUNT_DIR`, and must install the OS on the device.
    """

    def __init__(self, script_path: str):
        self.script_path = script_path

    def install(self, temp_volume_device: str, staging_dir: str) -> None:
        run_command(
            [self.script_path, temp_volume_device, staging_dir],
            env={"ZFS_TEMP_VOLUME_DEVICE": temp_volume_device, "ZFS_STAGING_MOUNT_DIR": staging_dir},
        )


def stage_os(installer: OsInstaller, temp_volume_device: str,
             staging_dir: str = INSTALLED_OS_MOUNT_DIR) -> None:
    """
    Install the OS on the temporary volume, and leave it mounted at the staging directory.

    Args:
        installer: OS installer delegate
        temp_volume_device: Block device of the temporary partition
        staging_dir: Directory where the installed OS is expected to be mounted
    """
    installer.install(temp_volume_device, staging_dir)

    run_command(["swapoff", "-a"])

    # The staging directory is not always left mounted; a possible cause is an
    # active swapfile making the installer fail the unmount silently.
    # Only one partition is expected on the temporary volume.
    if not is_mountpoint(staging_dir):
        console.print(f"[bold yellow]Warning:[/bold yellow] {staging_dir} is not mounted; remounting it.")
        os.makedirs(staging_dir, exist_ok=True)
        run_command(["mount", temp_volume_device, staging_dir])

    swap_file = os.path.join(staging_dir, installer.swap_file)
    if os.path.lexists(swap_file):
        os.remove(swap_file)

    console.print("[bold green]OS installed on the temporary volume.[/bold green]")


def find_submounts(mount_dir: str) -> List[str]:
    """
    Find the filesystems mounted under a directory, deepest first.

    Args:
        mount_dir: Parent directory

    Returns:
        List[str]: Mountpoints, in unmount order
    """
    prefix = mount_dir.rstrip("/") + "/"
    submounts = {
        partition.mountpoint
        for partition in psutil.disk_partitions(all=True)
        if partition.mountpoint.startswith(prefix)
    }
    return sorted(submounts, key=lambda path: (-path.count("/"), path))


def parse_rsync_progress(line: str) -> Optional[int]:
    """
    Extract the overall percentage from an `rsync --info=progress2` line.

    There's no exact way to tell the progress lines apart from file names, so
    the second field ending in `%` is good enough.
    """
    fields = line.split()
    if len(fields) < 2:
        return None
    match = RSYNC_PROGRESS_REGEX.match(fields[1])
    return int(match.group(1)) if match else None


def _rsync_with_progress(source_dir: str, destination_dir: str) -> None:
    command = [
        "rsync", "-avX", "--exclude=/run", "--info=progress2", "--no-inc-recursive",
        "--human-readable", f"{source_dir.rstrip('/')}/", destination_dir,
    ]
    logger.info("CMD %s", " ".join(command))

    with Progress() as progress:
        task = progress.add_task("[green]Syncing the installed OS to the root pool FS...", total=100)

        # Text mode turns the `\r`-separated progress updates into lines.
        process = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)

        for line in process.stdout:
            percent = parse_rsync_progress(line)
            if percent is not None:
                progress.update(task, completed=percent)

        process.wait()

    if process.returncode != 0:
        raise subprocess.CalledProcessError(process.returncode, command)


def sync_os_to_pool(staging_dir: str = INSTALLED_OS_MOUNT_DIR,
                    zfs_mount_dir: str = ZFS_MOUNT_DIR) -> None:
    """
    Copy the staged OS to the root pool, preserving attributes.

    Args:
        staging_dir: Mountpoint of the installed OS
        zfs_mount_dir: Alternate root of the pools
    """
    # E.g. `/boot/efi` and `/cdrom` on Ubuntu Server; they're not needed, and
    # syncing them would copy stale contents.
    for submount in find_submounts(staging_dir):
        run_command(["umount", submount])

    # `/run` is not needed, and some of its files vanish while syncing.
    _rsync_with_progress(staging_dir, zfs_mount_dir)

    os.makedirs(os.path.join(zfs_mount_dir, "run"), exist_ok=True)

    # Destination of the `/etc/resolv.conf` symlink on Ubuntu.
    if os.path.isdir(os.path.join(staging_dir, "run", "systemd", "resolve")):
        run_command(["rsync", "-av", "--relative",
                     f"{staging_dir.rstrip('/')}/run/./systemd/resolve",
                     os.path.join(zfs_mount_dir, "run")])

    run_command(["umount", staging_dir])

    console.print("[bold green]Installed OS synced to the root pool.[/bold green]")
