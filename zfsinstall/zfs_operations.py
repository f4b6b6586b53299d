"""
ZFS Operations Module

This module contains functions for ZFS-specific operations such as
creating the boot and root pools and the root pool datasets.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from rich.console import Console

from zfsinstall.command import run_command
from zfsinstall.config import ZFS_MOUNT_DIR
from zfsinstall.passphrase import PassphraseChannel
from zfsinstall.plan import InstallationPlan, PartitionPaths, PoolTweak

# Initialize a rich console for colored output
console = Console()

logger = logging.getLogger(__name__)

ENCRYPTION_OPTIONS = [
    "-O", "encryption=on",
    "-O", "keylocation=prompt",
    "-O", "keyformat=passphrase",
]


@dataclass(frozen=True)
class Dataset:
    name: str
    properties: Tuple[str, ...]


# Parents are listed before their children.
DATASETS = (
    Dataset("home", ("mountpoint=/home",)),
    Dataset("opt", ("mountpoint=/opt",)),
    Dataset("root", ("mountpoint=/root",)),
    Dataset("snap", ("mountpoint=/snap",)),
    Dataset("srv", ("mountpoint=/srv",)),
    Dataset("tmp", ("mountpoint=/tmp",)),
    # A mounted /usr dataset makes the system unbootable; this is only a parent.
    Dataset("usr", ("canmount=off",)),
    Dataset("usr/local", ("mountpoint=/usr/local",)),
    Dataset("var", ("mountpoint=/var",)),
    Dataset("var/lib", ("canmount=off",)),
    Dataset("var/lib/docker", ("mountpoint=/var/lib/docker",)),
)


def _tweak_tokens(tweaks: Tuple[PoolTweak, ...]) -> List[str]:
    tokens: List[str] = []
    for tweak in tweaks:
        tokens.extend(tweak.tokens())
    return tokens


def build_rpool_create_command(plan: InstallationPlan, partitions: List[str],
                               encrypted: bool, mount_dir: str = ZFS_MOUNT_DIR) -> List[str]:
    """
    Build the `zpool create` command of the root pool.

    `-R` sets a temporary alternate root, `-f` overwrites stale filesystem
    signatures that wipefs occasionally leaves behind.

    Args:
        plan: Installation parameters
        partitions: Partitions backing the pool
        encrypted: Enable passphrase encryption
        mount_dir: Alternate root

    Returns:
        List[str]: The command tokens
    """
    command = ["zpool", "create"]
    if encrypted:
        command.extend(ENCRYPTION_OPTIONS)
    command.extend(_tweak_tokens(plan.rpool_tweaks))
    command.extend(["-O", "devices=off", "-O", "mountpoint=/", "-R", mount_dir, "-f"])
    command.append(plan.rpool_name)
    command.extend(plan.raid_type.tokens())
    command.extend(partitions)
    return command


def build_bpool_create_command(plan: InstallationPlan, partitions: List[str],
                               mount_dir: str = ZFS_MOUNT_DIR) -> List[str]:
    """Build the `zpool create` command of the boot pool; never encrypted."""
    command = ["zpool", "create"]
    command.extend(_tweak_tokens(plan.bpool_tweaks))
    command.extend(["-O", "devices=off", "-O", "mountpoint=/boot", "-R", mount_dir, "-f"])
    command.append(plan.bpool_name)
    command.extend(plan.raid_type.tokens())
    command.extend(partitions)
    return command


def create_pools(plan: InstallationPlan, paths: PartitionPaths,
                 passphrase_channel: PassphraseChannel) -> bool:
    """
    Create the root pool, then the boot pool.

    The order matters: creating the boot pool first breaks the mounting of
    the root pool filesystems.

    Args:
        plan: Installation parameters
        paths: Resolved partition paths
        passphrase_channel: Holder of the encryption passphrase

    Returns:
        bool: True if the root pool is encrypted
    """
    passphrase = passphrase_channel.take() if passphrase_channel.is_set else ""
    encrypted = bool(passphrase)

    try:
        rpool_command = build_rpool_create_command(plan, [paths.rpool], encrypted)
        console.print(f"Creating root pool '{plan.rpool_name}'"
                      f"{' (encrypted)' if encrypted else ''}...")
        # The passphrase is read from stdin only when encryption is set.
        run_command(rpool_command, input_text=passphrase if encrypted else None)
    finally:
        passphrase_channel.write(passphrase)

    logger.info("Root pool encryption: %s", "on" if encrypted else "off")

    bpool_command = build_bpool_create_command(plan, [paths.bpool])
    console.print(f"Creating boot pool '{plan.bpool_name}'...")
    run_command(bpool_command)

    console.print("[bold green]ZFS pools created successfully.[/bold green]")
    return encrypted


def create_zfs_datasets(rpool_name: str, datasets: Optional[Tuple[Dataset, ...]] = None) -> None:
    """
    Create the root pool datasets.

    Args:
        rpool_name (str): Name of the root pool
        datasets: Datasets to create, parents first
    """
    for dataset in datasets or DATASETS:
        command = ["zfs", "create"]
        for zfs_property in dataset.properties:
            command.extend(["-o", zfs_property])
        command.append(f"{rpool_name}/{dataset.name}")
        run_command(command)

    console.print("[bold green]ZFS datasets created successfully.[/bold green]")
