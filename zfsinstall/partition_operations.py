"""
Partition Operations Module

This module contains functions for planning and applying the partition
layout, and for reclaiming the temporary partition once the OS has been
migrated to the root pool.
"""

import glob
import os
from typing import List, Optional, Tuple

from rich.console import Console
from rich.table import Table

from zfsinstall.command import SettlePolicy, run_command, udev_settle
from zfsinstall.config import (BOOT_PARTITION_SIZE_GIB, EFI_PARTITION_SIZE_GIB,
                               TEMPORARY_VOLUME_SIZE_GIB)
from zfsinstall.errors import PreconditionError
from zfsinstall.plan import (InstallationPlan, PartitionRole, PartitionSpec,
                             PartitionTable)

# Initialize a rich console for colored output
console = Console()

# GPT type codes
EFI_TYPE_CODE = "EF00"
SWAP_TYPE_CODE = "8200"
ZFS_TYPE_CODE = "BF01"
LINUX_TYPE_CODE = "8300"

GIB = 1024 ** 3
# Alignment of the first partition, and the primary and backup GPTs.
PARTITION_TABLE_OVERHEAD = 2 * 1024 ** 2


def plan_partitions(disk: str, swap_size: int, free_tail_space: int = 0) -> PartitionTable:
    """
    Compute the partition layout of the disk.

    The partitions before the root pool have a fixed size; the temporary
    partition occupies the tail of the disk, minus the reserved free space,
    and the root pool takes what's in between.

    Args:
        disk: Disk path (`/dev/disk/by-id/...`)
        swap_size: Swap size in GiB; 0 disables the swap partition
        free_tail_space: Space in GiB to leave free at the end of the disk

    Returns:
        PartitionTable: The layout, in partition order
    """
    if swap_size < 0 or free_tail_space < 0:
        raise ValueError("Sizes must not be negative")

    roles = [(PartitionRole.EFI, "1M", f"+{EFI_PARTITION_SIZE_GIB}G", EFI_TYPE_CODE)]

    if swap_size > 0:
        roles.append((PartitionRole.SWAP, "0", f"+{swap_size}G", SWAP_TYPE_CODE))

    tail_end = f"-{free_tail_space}G" if free_tail_space else "0"

    roles += [
        (PartitionRole.BOOT_POOL, "0", f"+{BOOT_PARTITION_SIZE_GIB}G", ZFS_TYPE_CODE),
        (PartitionRole.ROOT_POOL, "0", f"-{TEMPORARY_VOLUME_SIZE_GIB + free_tail_space}G", ZFS_TYPE_CODE),
        (PartitionRole.TEMP, "0", tail_end, LINUX_TYPE_CODE),
    ]

    partitions = tuple(
        PartitionSpec(index=index, start=start, end=end, type_code=type_code, role=role)
        for index, (role, start, end, type_code) in enumerate(roles, start=1)
    )
    return PartitionTable(disk=disk, partitions=partitions)


def partition_commands(table: PartitionTable) -> List[List[str]]:
    """Build the sgdisk commands creating the partitions of the table."""
    return [
        ["sgdisk", f"-n{p.index}:{p.start}:{p.end}", f"-t{p.index}:{p.type_code}", table.disk]
        for p in table.partitions
    ]


def get_disk_capacity(disk: str) -> int:
    """Get the size of a disk in bytes."""
    output = run_command(["lsblk", "-d", "-b", "-n", "-o", "SIZE", disk]).strip()
    if not output.isdigit():
        raise PreconditionError(f"Can't determine the size of the disk {disk}: {output!r}")
    return int(output)


def required_disk_capacity(swap_size: int, free_tail_space: int = 0) -> int:
    """
    Minimum disk size for the layout, in bytes.

    The root pool has no declared size; it must get at least some space
    between the boot pool and the temporary partition.
    """
    declared_gib = (EFI_PARTITION_SIZE_GIB + swap_size + BOOT_PARTITION_SIZE_GIB
                    + TEMPORARY_VOLUME_SIZE_GIB + free_tail_space)
    return declared_gib * GIB + PARTITION_TABLE_OVERHEAD


def check_disk_capacity(plan: InstallationPlan) -> None:
    """
    Verify that the layout fits the disk, before anything is wiped.

    Raises:
        PreconditionError: If the disk is too small
    """
    capacity = get_disk_capacity(plan.disk)
    required = required_disk_capacity(plan.swap_size, plan.free_tail_space)

    if capacity <= required:
        raise PreconditionError(
            f"The disk {plan.disk} is too small: {capacity / GIB:.1f} GiB available, "
            f"more than {required / GIB:.1f} GiB required by the partition layout.")


def clear_zfs_labels(disk: str) -> None:
    """
    Clear the ZFS labels of the existing partitions.

    wipefs doesn't fully wipe ZFS labels.
    """
    for partition in sorted(glob.glob(f"{glob.escape(disk)}-part*")):
        run_command(["zpool", "labelclear", "-f", partition], check=False)


def setup_partitions(plan: InstallationPlan,
                     settle_policy: Optional[SettlePolicy] = None) -> Tuple[PartitionTable, str]:
    """
    Wipe the disk, create the partitions, and format the EFI and swap ones.

    Args:
        plan: Installation parameters
        settle_policy: Wait policy for the partition device nodes

    Returns:
        Tuple[PartitionTable, str]: The applied layout, and the resolved block
        device of the temporary partition

    Raises:
        PreconditionError: If the disk is too small for the layout
    """
    table = plan_partitions(plan.disk, plan.swap_size, plan.free_tail_space)
    display_partition_table(table)

    check_disk_capacity(plan)

    clear_zfs_labels(plan.disk)

    # More thorough than `sgdisk --zap-all`.
    run_command(["wipefs", "--all", plan.disk])
    # Fill the primary GPT with zeros.
    run_command(["dd", "bs=512", "seek=1", "count=33", "conv=notrunc",
                 "if=/dev/zero", f"of={plan.disk}"])

    for command in partition_commands(table):
        run_command(command)

    paths = table.paths()
    expected_paths = [table.path_of(p.role) for p in table.partitions]

    # There is still a hard to reproduce race where `zpool create` can't
    # resolve a partition path; waiting more solves it.
    udev_settle(settle_policy or SettlePolicy(), expected_paths)

    run_command(["mkfs.fat", "-F", "32", "-n", "ESP", paths.efi])

    if paths.swap:
        run_command(["mkswap", "-L", "spart", paths.swap])

    temp_volume_device = os.path.realpath(paths.temp)

    console.print(f"[bold green]Disk {plan.disk} partitioned successfully.[/bold green]")
    return table, temp_volume_device


def resize_reference(free_tail_space: int) -> str:
    """End position of the grown root pool partition."""
    return f"-{free_tail_space}GiB" if free_tail_space else "100%"


def reclaim_partition(plan: InstallationPlan, table: PartitionTable) -> None:
    """
    Remove the temporary partition and expand the root pool into the freed space.

    Args:
        plan: Installation parameters
        table: The applied layout
    """
    temp_index = table.index_of(PartitionRole.TEMP)
    rpool_index = table.index_of(PartitionRole.ROOT_POOL)

    run_command(["parted", "-s", plan.disk, "rm", str(temp_index)])
    run_command(["parted", "-s", plan.disk, "unit", "s", "resizepart", str(rpool_index),
                 "--", resize_reference(plan.free_tail_space)])

    # Without this, the pool doesn't see the larger partition.
    run_command(["zpool", "online", "-e", plan.rpool_name, table.path_of(PartitionRole.ROOT_POOL)])

    console.print(
        f"[bold green]Root pool '{plan.rpool_name}' expanded to partition {rpool_index}.[/bold green]")


def display_partition_table(table: PartitionTable) -> None:
    """
    Display the partition layout in a formatted table.

    Args:
        table: The layout to display
    """
    rich_table = Table(title=f"Partition layout of {os.path.basename(table.disk)}")

    rich_table.add_column("#", style="cyan")
    rich_table.add_column("Role", style="green")
    rich_table.add_column("Start", style="magenta")
    rich_table.add_column("End", style="magenta")
    rich_table.add_column("Type")

    for partition in table.partitions:
        rich_table.add_row(str(partition.index), partition.role.value, partition.start,
                           partition.end, partition.type_code)

    console.print(rich_table)
