"""
Jail Operations Module

This module contains the functions configuring the new system from inside
a chroot: ZFS and bootloader packages, GRUB, the boot pool import, the
periodic trim, and the remaining fstab/initramfs settings.
"""

import os
from typing import List

from rich.console import Console

from zfsinstall.command import chroot_shell, run_chroot_command, run_command
from zfsinstall.config import ZFS_MOUNT_DIR
from zfsinstall.distributions import Distribution
from zfsinstall.plan import InstallationPlan, PartitionPaths

# Initialize a rich console for colored output
console = Console()

VIRTUAL_FILESYSTEMS = ["proc", "sys", "dev"]
NAMESERVER = "8.8.8.8"

BOOT_POOL_IMPORT_UNIT = """[Unit]
DefaultDependencies=no
Before=zfs-import-scan.service
Before=zfs-import-cache.service

[Service]
Type=oneshot
RemainAfterExit=yes
ExecStartPre=/bin/sh -c '[ -f /etc/zfs/zpool.cache ] && mv /etc/zfs/zpool.cache /etc/zfs/preboot_zpool.cache || true'
ExecStart=/sbin/zpool import -N -o cachefile=none {bpool_name}
ExecStartPost=/bin/sh -c '[ -f /etc/zfs/preboot_zpool.cache ] && mv /etc/zfs/preboot_zpool.cache /etc/zfs/zpool.cache || true'

[Install]
WantedBy=zfs-import.target
"""

# Same conventions as the `fstrim` service.
TRIM_SERVICE = """[Unit]
Description=Discard unused ZFS blocks
ConditionVirtualization=!container

[Service]
Type=oneshot
ExecStart=/sbin/zpool trim {bpool_name}
ExecStart=/sbin/zpool trim {rpool_name}
"""

TRIM_TIMER = """[Unit]
Description=Discard unused ZFS blocks once a week
ConditionVirtualization=!container

[Timer]
OnCalendar=weekly
AccuracySec=1h
Persistent=true

[Install]
WantedBy=timers.target
"""


def _jail_path(root_path: str, path: str) -> str:
    return os.path.join(root_path, path.lstrip("/"))


def _write_file(root_path: str, path: str, content: str, append: bool = False) -> None:
    host_path = _jail_path(root_path, path)
    os.makedirs(os.path.dirname(host_path), exist_ok=True)
    with open(host_path, "a" if append else "w") as f:
        f.write(content)


def get_partuuid(partition: str) -> str:
    """Get the PARTUUID of a partition, stable across device renames."""
    return run_command(["blkid", "-s", "PARTUUID", "-o", "value", partition]).strip()


def prepare_jail(root_path: str = ZFS_MOUNT_DIR) -> None:
    """
    Bind the virtual filesystems into the new root, and make the network reachable from it.

    Args:
        root_path: Root of the jail
    """
    for virtual_fs_dir in VIRTUAL_FILESYSTEMS:
        target = _jail_path(root_path, virtual_fs_dir)
        os.makedirs(target, exist_ok=True)
        run_command(["mount", "--rbind", f"/{virtual_fs_dir}", target])

    # `/etc/resolv.conf` may be a symlink; resolve it inside the jail.
    chroot_shell(root_path, f"echo 'nameserver {NAMESERVER}' >> /etc/resolv.conf")


def install_jail_zfs_packages(distribution: Distribution, zfs_in_repository: bool,
                              root_path: str = ZFS_MOUNT_DIR) -> None:
    distribution.install_jail_zfs_packages(root_path, zfs_in_repository)
    console.print("[bold green]ZFS and bootloader packages installed.[/bold green]")


def _strip_cmdline_words(line: str, words: List[str]) -> str:
    key, _, value = line.partition("=")
    quoted = value.startswith('"') and value.endswith('"') and len(value) >= 2
    arguments = value[1:-1] if quoted else value
    kept = " ".join(word for word in arguments.split() if word not in words)
    return f'{key}="{kept}"' if quoted else f"{key}={kept}"


def rewrite_grub_defaults(content: str, rpool_name: str) -> str:
    """
    Adjust `/etc/default/grub` for booting from the root pool.

    The graphical boot is disabled: text mode is required for the passphrase
    to be asked, otherwise the boot stops with a confusing "Permission Denied"
    mount error.

    Args:
        content: Original file content
        rpool_name: Name of the root pool

    Returns:
        str: The new file content
    """
    lines = []
    for line in content.splitlines():
        if line.startswith('GRUB_CMDLINE_LINUX="'):
            line = line.replace('GRUB_CMDLINE_LINUX="', f'GRUB_CMDLINE_LINUX="root=ZFS={rpool_name} ', 1)
        elif line.startswith("GRUB_CMDLINE_LINUX_DEFAULT="):
            line = _strip_cmdline_words(line, ["quiet", "splash"])
        elif line.startswith("GRUB_TIMEOUT_STYLE=hidden") or line.startswith("GRUB_HIDDEN_"):
            line = f"#{line}"
        elif line.strip() == "GRUB_TIMEOUT=0":
            line = "GRUB_TIMEOUT=5"
        elif line.strip() == "#GRUB_TERMINAL=console":
            line = "GRUB_TERMINAL=console"
        lines.append(line)

    # Silences a warning during the grub probe.
    lines.append("GRUB_DISABLE_OS_PROBER=true")
    lines.append("GRUB_RECORDFAIL_TIMEOUT=5")

    return "\n".join(lines) + "\n"


def install_and_configure_bootloader(plan: InstallationPlan, paths: PartitionPaths,
                                     root_path: str = ZFS_MOUNT_DIR) -> None:
    """
    Install GRUB on the EFI partition, and point the kernel command line to the root pool.

    Args:
        plan: Installation parameters
        paths: Resolved partition paths
        root_path: Root of the jail
    """
    efi_partuuid = get_partuuid(paths.efi)
    _write_file(root_path, "/etc/fstab",
                f"PARTUUID={efi_partuuid} /boot/efi vfat nofail,x-systemd.device-timeout=1 0 1\n")

    run_chroot_command(root_path, ["mkdir", "-p", "/boot/efi"])
    run_chroot_command(root_path, ["mount", "/boot/efi"])

    run_chroot_command(root_path, ["grub-install"])

    grub_defaults = _jail_path(root_path, "/etc/default/grub")
    with open(grub_defaults) as f:
        content = f.read()
    with open(grub_defaults, "w") as f:
        f.write(rewrite_grub_defaults(content, plan.rpool_name))

    run_chroot_command(root_path, ["update-grub"])

    run_chroot_command(root_path, ["umount", "/boot/efi"])

    console.print("[bold green]Bootloader installed and configured.[/bold green]")


def configure_boot_pool_import(plan: InstallationPlan, root_path: str = ZFS_MOUNT_DIR) -> None:
    """
    Import the boot pool at startup, before the generic ZFS import units.

    A stale pool cache file is moved away during the import, then restored.
    The boot pool is mounted via fstab rather than by ZFS.

    Args:
        plan: Installation parameters
        root_path: Root of the jail
    """
    unit_name = f"zfs-import-{plan.bpool_name}.service"

    _write_file(root_path, f"/etc/systemd/system/{unit_name}",
                BOOT_POOL_IMPORT_UNIT.format(bpool_name=plan.bpool_name))

    run_chroot_command(root_path, ["systemctl", "enable", unit_name])

    run_chroot_command(root_path, ["zfs", "set", "mountpoint=legacy", plan.bpool_name])
    _write_file(root_path, "/etc/fstab",
                f"{plan.bpool_name} /boot zfs nodev,relatime,x-systemd.requires={unit_name} 0 0\n",
                append=True)

    console.print(f"[bold green]Boot pool import unit {unit_name} configured.[/bold green]")


def configure_pools_trimming(plan: InstallationPlan, root_path: str = ZFS_MOUNT_DIR) -> None:
    """
    Create the weekly trim service and timer for both pools.

    There's no synchronization with the `fstrim` service: no other large
    filesystem is expected, and trimming takes minutes.

    Args:
        plan: Installation parameters
        root_path: Root of the jail
    """
    _write_file(root_path, "/lib/systemd/system/zfs-trim.service",
                TRIM_SERVICE.format(bpool_name=plan.bpool_name, rpool_name=plan.rpool_name))
    _write_file(root_path, "/lib/systemd/system/zfs-trim.timer", TRIM_TIMER)

    run_chroot_command(root_path, ["systemctl", "daemon-reload"])
    run_chroot_command(root_path, ["systemctl", "enable", "zfs-trim.timer"])

    console.print("[bold green]Pools trimming configured.[/bold green]")


def configure_remaining_settings(plan: InstallationPlan, paths: PartitionPaths,
                                 root_path: str = ZFS_MOUNT_DIR) -> None:
    """
    Add the swap entry to fstab, disable resume from hibernation, and
    regenerate the initramfs on the boot pool.

    Must run after `configure_boot_pool_import()`, which adds the `/boot`
    fstab entry.

    Args:
        plan: Installation parameters
        paths: Resolved partition paths
        root_path: Root of the jail
    """
    if plan.swap_enabled and paths.swap:
        swap_partuuid = get_partuuid(paths.swap)
        _write_file(root_path, "/etc/fstab",
                    f"PARTUUID={swap_partuuid} swap swap defaults 0 0\n", append=True)

    _write_file(root_path, "/etc/initramfs-tools/conf.d/resume", "RESUME=none\n")

    # The boot pool has a legacy mountpoint by now; the initramfs must land on
    # it, not on the empty `/boot` directory of the root pool.
    run_chroot_command(root_path, ["mount", "/boot"])
    try:
        run_chroot_command(root_path, ["update-initramfs", "-u", "-k", "all"])
    finally:
        run_chroot_command(root_path, ["umount", "/boot"])
