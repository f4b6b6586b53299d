"""
System Operations Module

This module contains functions for system-level operations such as
checking prerequisites and installing the tools required on the live system.
"""

import os
import platform
import re
import shutil
import sys
from typing import List

from rich.console import Console

from zfsinstall.command import run_command
from zfsinstall.config import (MIN_PASSPHRASE_LENGTH, SUPPORTED_DISTRIBUTIONS,
                               EnvironmentOverrides)
from zfsinstall.distributions import Distribution
from zfsinstall.os_operations import display_message

# Initialize a rich console for colored output
console = Console()

EFI_FIRMWARE_DIR = "/sys/firmware/efi"

# Mapping of commands to their corresponding packages
COMMAND_TO_PACKAGE = {
    "sgdisk": "gdisk",
    "parted": "parted",
    "wipefs": "util-linux",
    "mkfs.fat": "dosfstools",
    "rsync": "rsync",
    "udevadm": "udev",
}

# List of required commands
REQUIRED_COMMANDS = ["sgdisk", "parted", "wipefs", "mkfs.fat", "rsync", "udevadm"]

ZFS_VERSION_REGEX = re.compile(r"^Version: (\d+)\.(\d+)\.", re.MULTILINE)


def check_system_compatibility() -> bool:
    """
    Check if the system is Linux.

    Returns:
        bool: True if the system is Linux, False otherwise
    """
    if platform.system() != "Linux":
        console.print(
            "[bold red]Error:[/bold red] This script is only compatible with Linux.")
        sys.exit(1)
    return True


def check_root_privileges() -> bool:
    """
    Check if the script is running with root privileges.

    Returns:
        bool: True if running as root, False otherwise
    """
    if os.geteuid() != 0:
        console.print("[bold red]Error:[/bold red] This script must be run with administrative privileges!")
        return False
    return True


def check_prerequisites(distribution: Distribution, overrides: EnvironmentOverrides,
                        efi_firmware_dir: str = EFI_FIRMWARE_DIR) -> bool:
    """
    Check if all prerequisites are met to run the installer.

    Nothing destructive has happened yet when this runs.

    Args:
        distribution: Running distribution
        overrides: Environment settings
        efi_firmware_dir: Directory present only when booted in EFI mode

    Returns:
        bool: True if all prerequisites are met, False otherwise
    """
    check_system_compatibility()

    if not os.path.isdir(efi_firmware_dir):
        console.print("[bold red]Error:[/bold red] System firmware directory not found; "
                      "make sure to boot in EFI mode!")
        return False

    if not check_root_privileges():
        return False

    script = overrides.os_installation_script
    if script and not (os.path.isfile(script) and os.access(script, os.X_OK)):
        console.print("[bold red]Error:[/bold red] The custom O/S installation script provided "
                      "doesn't exist or is not executable!")
        return False

    supported_versions = SUPPORTED_DISTRIBUTIONS.get(distribution.name)
    if supported_versions is None:
        console.print(f"[bold red]Error:[/bold red] This Linux distribution ({distribution.name}) "
                      "is not supported!")
        return False

    if distribution.version not in supported_versions:
        console.print(f"[bold red]Error:[/bold red] This Linux distribution version "
                      f"({distribution.version}) is not supported; supported versions: "
                      f"{', '.join(supported_versions)}")
        return False

    if overrides.passphrase and len(overrides.passphrase) < MIN_PASSPHRASE_LENGTH:
        console.print(f"[bold red]Error:[/bold red] The passphrase provided is too short; "
                      f"at least {MIN_PASSPHRASE_LENGTH} chars required.")
        return False

    return True


def find_zfs_package_requirements() -> bool:
    """
    Tell whether the distribution repository ships ZFS 0.8 or later.

    Later steps assume that the package index has been updated here.

    Returns:
        bool: True if the repository version can be used as is
    """
    run_command(["apt", "update"])

    output = run_command(["apt", "show", "zfsutils-linux"], check=False)
    match = ZFS_VERSION_REGEX.search(output)
    if not match:
        return False

    return (int(match.group(1)), int(match.group(2))) >= (0, 8)


def find_missing_commands() -> List[str]:
    """
    Check which required commands are missing.

    Returns:
        list: List of missing commands
    """
    missing_commands = []
    for cmd in REQUIRED_COMMANDS:
        if shutil.which(cmd) is None:
            console.print(
                f"[bold yellow]Warning:[/bold yellow] Required command '{cmd}' not found. Attempting to install...")
            missing_commands.append(cmd)
    return missing_commands


def install_host_tools(distribution: Distribution, zfs_in_repository: bool,
                       overrides: EnvironmentOverrides) -> None:
    """
    Install the ZFS tools and the disk utilities on the live system.

    Args:
        distribution: Running distribution
        zfs_in_repository: The repository ships a suitable ZFS version
        overrides: Environment settings
    """
    distribution.install_host_packages(zfs_in_repository, overrides.skip_live_zfs_module_install)

    missing_commands = find_missing_commands()
    if missing_commands:
        # Use a set to eliminate duplicate packages
        packages_to_install = sorted(set(COMMAND_TO_PACKAGE[cmd] for cmd in missing_commands))
        console.print(f"Installing packages: {', '.join(packages_to_install)}")
        run_command(["apt", "install", "--yes"] + packages_to_install)


def display_intro_banner(no_info_messages: bool) -> None:
    display_message(
        "Hello!\n\n"
        "This script will prepare the ZFS pools on the system, install Ubuntu, and configure the boot.\n\n"
        "In order to stop the procedure, hit Ctrl+C while any operation is running.",
        no_info_messages,
    )


def display_exit_banner(no_info_messages: bool) -> None:
    console.print("[bold green]Installation completed successfully![/bold green]")
    display_message(
        "The system has been successfully prepared and installed.\n\n"
        "You now need to perform a hard reset, then enjoy your ZFS system :-)",
        no_info_messages,
    )
