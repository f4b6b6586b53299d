"""
Configuration Module

This module holds the installer constants and the environment overrides that
allow the procedure to run unattended.
"""

import os
import tempfile
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

# Mount points used during the installation
ZFS_MOUNT_DIR = "/mnt"
INSTALLED_OS_MOUNT_DIR = "/target"

# Partition sizes. 512M are enough for a few kernels, but the Ubuntu updater
# complains after a couple.
EFI_PARTITION_SIZE_GIB = 1
BOOT_PARTITION_SIZE_GIB = 1
# Large enough for the staged OS; Debian, for example, takes ~8 GiB.
TEMPORARY_VOLUME_SIZE_GIB = 12

DEFAULT_BPOOL_NAME = "bpool"
DEFAULT_RPOOL_NAME = "rpool"
# GRUB reads only a subset of the pool features; the boot pool enables just those.
BOOT_POOL_FEATURES = (
    "async_destroy", "bookmarks", "embedded_data", "empty_bpobj", "enabled_txg",
    "extensible_dataset", "filesystem_limits", "hole_birth", "large_blocks",
    "lz4_compress", "spacemap_histogram",
)
DEFAULT_BPOOL_TWEAKS = "-o ashift=12 -d " + " ".join(
    f"-o feature@{feature}=enabled" for feature in BOOT_POOL_FEATURES
)
DEFAULT_RPOOL_TWEAKS = (
    "-o ashift=12 -O acltype=posixacl -O compression=lz4 -O dnodesize=auto "
    "-O relatime=on -O xattr=sa -O normalization=formD"
)

MIN_PASSPHRASE_LENGTH = 8

# On some systems every `udevadm settle` invocation times out; the exit codes
# are not documented, so a timeout is not treated as an error.
UDEVADM_SETTLE_TIMEOUT = 10  # seconds
UNMOUNT_WAIT = 5  # seconds

SUPPORTED_DISTRIBUTIONS: Dict[str, Tuple[str, ...]] = {
    "Ubuntu": ("18.04", "20.04", "22.04", "24.04"),
    "UbuntuServer": ("18.04", "20.04", "22.04", "24.04"),
    "LinuxMint": ("19.1", "19.2", "19.3"),
    "elementary": ("5.1",),
}

LOG_DIR = os.path.join(tempfile.gettempdir(), "zfs-installer")
INSTALL_LOG = os.path.join(LOG_DIR, "install.log")
OS_INFORMATION_LOG = os.path.join(LOG_DIR, "os_information.log")
RUNNING_PROCESSES_LOG = os.path.join(LOG_DIR, "running_processes.log")
DISKS_LOG = os.path.join(LOG_DIR, "disks.log")
ZFS_MODULE_VERSION_LOG = os.path.join(LOG_DIR, "updated_module_versions.log")


@dataclass(frozen=True)
class EnvironmentOverrides:
    """
    Values supplied through the environment.

    `None` means "not set", in which case the user is prompted; an empty
    string is a meaningful value for the passphrase (encryption disabled) and
    the RAID type (striping).
    """
    os_installation_script: Optional[str] = None
    passphrase: Optional[str] = None
    bpool_name: str = DEFAULT_BPOOL_NAME
    rpool_name: str = DEFAULT_RPOOL_NAME
    bpool_tweaks: Optional[str] = None
    rpool_tweaks: Optional[str] = None
    pools_raid_type: Optional[str] = None
    no_info_messages: bool = False
    swap_size: Optional[str] = None
    free_tail_space: Optional[str] = None
    selected_disk: Optional[str] = None
    skip_live_zfs_module_install: bool = False


def load_overrides(environ: Optional[Mapping[str, str]] = None) -> EnvironmentOverrides:
    """
    Read the installer settings from the environment.

    Args:
        environ: Mapping to read from; defaults to `os.environ`

    Returns:
        EnvironmentOverrides: The recognized settings
    """
    if environ is None:
        environ = os.environ

    return EnvironmentOverrides(
        os_installation_script=environ.get("ZFS_OS_INSTALLATION_SCRIPT") or None,
        passphrase=environ.get("ZFS_PASSPHRASE"),
        bpool_name=environ.get("ZFS_BPOOL_NAME") or DEFAULT_BPOOL_NAME,
        rpool_name=environ.get("ZFS_RPOOL_NAME") or DEFAULT_RPOOL_NAME,
        bpool_tweaks=environ.get("ZFS_BPOOL_TWEAKS") or None,
        rpool_tweaks=environ.get("ZFS_RPOOL_TWEAKS") or None,
        pools_raid_type=environ.get("ZFS_POOLS_RAID_TYPE"),
        no_info_messages=bool(environ.get("ZFS_NO_INFO_MESSAGES")),
        swap_size=environ.get("ZFS_SWAP_SIZE") or None,
        free_tail_space=environ.get("ZFS_FREE_TAIL_SPACE") or None,
        selected_disk=environ.get("ZFS_SELECTED_DISK") or None,
        skip_live_zfs_module_install=environ.get("ZFS_SKIP_LIVE_ZFS_MODULE_INSTALL") == "1",
    )
