"""
Disk Operations Module

This module contains functions for disk-related operations such as
finding the disks suitable for the installation and selecting one.
"""

import os
import re
import subprocess
from typing import Any, Dict, List, Optional, Set

import psutil
import questionary
from rich.console import Console
from rich.table import Table

from zfsinstall import config
from zfsinstall.command import run_command
from zfsinstall.errors import NoSuitableDiskError, PreconditionError
from zfsinstall.logging_utils import write_log

# Initialize a rich console for colored output
console = Console()

# Constants
DISK_BY_ID_DIR = "/dev/disk/by-id"
CANDIDATE_DISK_REGEX = re.compile(r"^(ata|nvme|scsi|mmc)-.+")
PARTITION_SUFFIX_REGEX = re.compile(r"-part[0-9]+$")
UNKNOWN_MODEL = "Unknown"

NO_SUITABLE_DISKS_MESSAGE = (
    "No suitable disks have been found! If you're running inside a VMWare "
    "virtual machine, you need to set `disk.EnableUUID = \"TRUE\"` in the .vmx "
    "configuration file. Device details are logged in {log}."
)


def list_candidate_disks(by_id_dir: str = DISK_BY_ID_DIR) -> List[str]:
    """
    List the whole-disk entries of `/dev/disk/by-id`.

    Args:
        by_id_dir: Directory holding the disk id symlinks

    Returns:
        List[str]: Sorted disk id paths
    """
    return sorted(
        os.path.join(by_id_dir, entry)
        for entry in os.listdir(by_id_dir)
        if CANDIDATE_DISK_REGEX.match(entry) and not PARTITION_SUFFIX_REGEX.search(entry)
    )


def get_mounted_devices() -> Set[str]:
    """
    Get the names of the block devices having at least one mounted partition.

    Returns:
        Set[str]: Parent device names, e.g. `sda`
    """
    devices = set()
    for partition in psutil.disk_partitions(all=False):
        if not partition.device.startswith("/dev/"):
            continue
        output = run_command(["lsblk", "-no", "pkname", partition.device], check=False)
        devices.update(line.strip() for line in output.splitlines() if line.strip())
    return devices


def get_device_properties(device: str) -> Dict[str, str]:
    """Get the udev properties of a block device."""
    output = run_command(["udevadm", "info", "--query=property", device])
    properties = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            properties[key.strip()] = value.strip()
    return properties


def get_disk_size(disk_path: str) -> str:
    """Get the size of a disk in human-readable format"""
    try:
        size_output = run_command(["lsblk", "-d", "-b", "-n", "-o", "SIZE", disk_path])
        if size_output.strip():
            return f"{int(size_output.strip()) / (1024**3):.1f}G"
    except (subprocess.SubprocessError, ValueError):
        pass
    return "Unknown"


def get_disk_model(disk_path: str) -> str:
    """Get the model name of a disk"""
    try:
        model_output = run_command(["lsblk", "-d", "-n", "-o", "MODEL", disk_path])
        if model_output.strip():
            return model_output.strip()
    except subprocess.SubprocessError:
        pass
    return UNKNOWN_MODEL


def find_suitable_disks(by_id_dir: str = DISK_BY_ID_DIR,
                        log_path: str = config.DISKS_LOG) -> List[Dict[str, Any]]:
    """
    Find the disks that can host the installation.

    It's unclear if it's possible to establish with certainty what is an
    internal disk, so the id name is relied upon, and optical devices and
    devices with mounted partitions are filtered out.

    Args:
        by_id_dir: Directory holding the disk id symlinks
        log_path: Diagnostic log of the devices found

    Returns:
        List[Dict[str, Any]]: Disk info dictionaries

    Raises:
        NoSuitableDiskError: If no disk is suitable
    """
    # In some cases (e.g. a cloned VM), the by-id directory is not up to date.
    run_command(["udevadm", "trigger"])

    listing = []
    for entry in sorted(os.listdir(by_id_dir)):
        entry_path = os.path.join(by_id_dir, entry)
        target = os.readlink(entry_path) if os.path.islink(entry_path) else ""
        listing.append(f"{entry} -> {target}")
    write_log(log_path, "\n".join(listing) + "\n")

    mounted_devices = get_mounted_devices()
    suitable_disks = []

    for disk_id in list_candidate_disks(by_id_dir):
        device = os.path.realpath(disk_id)
        block_device_basename = os.path.basename(device)
        properties = get_device_properties(device)

        if properties.get("ID_TYPE") != "cd" and block_device_basename not in mounted_devices:
            suitable_disks.append({
                "name": f"{disk_id} ({block_device_basename})",
                "value": disk_id,
                "device": block_device_basename,
                "size": get_disk_size(device),
                "model": get_disk_model(device),
            })

        device_log = "\n".join(f"{key}={value}" for key, value in properties.items())
        write_log(log_path, f"\n## DEVICE: {disk_id} ################################\n\n"
                            f"{device_log}\n", append=True)

    if not suitable_disks:
        raise NoSuitableDiskError(NO_SUITABLE_DISKS_MESSAGE.format(log=log_path))

    return suitable_disks


def select_disk(disks: List[Dict[str, Any]], preset: Optional[str] = None) -> Optional[str]:
    """
    Select the disk for the installation.

    Args:
        disks: Suitable disk info dictionaries
        preset: Disk id chosen via the environment, if any

    Returns:
        Optional[str]: The selected disk id, or None if the user aborted

    Raises:
        PreconditionError: If the preset disk is not suitable
    """
    values = [disk["value"] for disk in disks]

    if preset:
        if preset not in values:
            raise PreconditionError(f"The selected disk ({preset}) is not among the suitable ones!")
        return preset

    display_disk_info(disks)
    console.print("Devices with mounted partitions, cdroms, and removable devices are not displayed!")

    return questionary.select(
        "Select the ZFS device:",
        choices=[{"name": disk["name"], "value": disk["value"]} for disk in disks]
    ).ask()


def display_disk_info(disks: List[Dict[str, Any]]) -> None:
    """
    Display disk information in a formatted table.

    Args:
        disks: List of disk information dictionaries
    """
    table = Table(title="Available Disks")

    table.add_column("Device", style="cyan")
    table.add_column("Id", style="blue")
    table.add_column("Size", style="magenta")
    table.add_column("Model", style="green")

    for disk in disks:
        table.add_row(
            disk["device"],
            os.path.basename(disk["value"]),
            disk["size"],
            disk["model"]
        )

    console.print(table)
