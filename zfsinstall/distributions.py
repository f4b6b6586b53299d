"""
Distributions Module

This module contains the per-distribution variants of the installation
steps. The variant is chosen once, at startup, by `detect_distribution()`.
"""

import logging
from typing import Dict, Type

from rich.console import Console

from zfsinstall import config
from zfsinstall.command import run_chroot_command, run_command
from zfsinstall.config import EnvironmentOverrides
from zfsinstall.logging_utils import parent_desktop_environment, write_log
from zfsinstall.os_operations import (GuiInstaller, OsInstaller,
                                      ScriptInstaller, ServerInstaller)

# Initialize a rich console for colored output
console = Console()

logger = logging.getLogger(__name__)

ZFS_PPA = "ppa:jonathonf/zfs"
ZFS_DKMS_LICENSE_SELECTION = "zfs-dkms zfs-dkms/note-incompatible-licenses note true\n"
# The libzfs library comes in as a dependency of zfsutils-linux; its package
# name changes across releases (libzfs2linux, libzfs4linux).
JAIL_ZFS_PACKAGES = ["zfs-initramfs", "zfs-zed", "zfsutils-linux"]
JAIL_BOOTLOADER_PACKAGES = ["grub-efi-amd64-signed", "shim-signed"]


class Distribution:
    """
    Default (Ubuntu desktop based) behavior.

    Ubuntu, Linux Mint and elementary OS share it.
    """

    def __init__(self, name: str, version: str):
        self.name = name
        self.version = version

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, {self.version!r})"

    def store_os_information(self, log_path: str = config.OS_INFORMATION_LOG) -> None:
        """Store the distribution details and the desktop environment of the invoking user."""
        write_log(log_path, run_command(["lsb_release", "--all"]) + parent_desktop_environment())

    def install_zfs_module(self) -> None:
        """
        Build and load the ZFS 0.8 module on the live system.

        libelf-dev allows `CONFIG_STACK_VALIDATION` to be set; optional, but
        good to have.
        """
        run_command(["add-apt-repository", "--yes", ZFS_PPA])
        run_command(["apt", "update"])
        run_command(["debconf-set-selections"], input_text=ZFS_DKMS_LICENSE_SELECTION)
        run_command(["apt", "install", "--yes", "libelf-dev", "zfs-dkms"])

        run_command(["systemctl", "stop", "zfs-zed"])
        run_command(["modprobe", "-r", "zfs"])
        run_command(["modprobe", "zfs"])
        run_command(["systemctl", "start", "zfs-zed"])

    def install_host_packages(self, zfs_in_repository: bool,
                              skip_module_install: bool = False) -> None:
        """
        Install the tools needed on the live system.

        Args:
            zfs_in_repository: The repository ships a suitable ZFS version
            skip_module_install: Don't build the ZFS module, even if needed
        """
        if not zfs_in_repository and not skip_module_install:
            self.install_zfs_module()

        run_command(["apt", "install", "--yes", "efibootmgr"])
        self.store_zfs_version()

    def store_zfs_version(self, log_path: str = config.ZFS_MODULE_VERSION_LOG) -> None:
        output = run_command(["zfs", "--version"], check=False)
        write_log(log_path, output)

    def create_installer(self, overrides: EnvironmentOverrides) -> OsInstaller:
        """Choose the OS installer delegate."""
        if overrides.os_installation_script:
            return ScriptInstaller(overrides.os_installation_script)
        return GuiInstaller(no_info_messages=overrides.no_info_messages)

    def install_jail_zfs_packages(self, root_path: str, zfs_in_repository: bool) -> None:
        """
        Install the ZFS and bootloader packages in the jail.

        Args:
            root_path: Root of the jail
            zfs_in_repository: The repository ships a suitable ZFS version
        """
        if not zfs_in_repository:
            run_chroot_command(root_path, ["add-apt-repository", "--yes", ZFS_PPA])
            run_chroot_command(root_path, ["apt", "update"])
            run_command(["chroot", root_path, "debconf-set-selections"],
                        input_text=ZFS_DKMS_LICENSE_SELECTION)
            run_chroot_command(root_path, ["apt", "install", "--yes", "libelf-dev",
                                           "zfs-initramfs", "zfs-dkms"])
        else:
            # On the live session the tools are present, but not associated
            # to a package; they must be installed explicitly.
            run_chroot_command(root_path, ["apt", "install", "--yes"] + JAIL_ZFS_PACKAGES)

        run_chroot_command(root_path, ["apt", "install", "--yes"] + JAIL_BOOTLOADER_PACKAGES)


class UbuntuServer(Distribution):
    """Ubuntu Server: text installer, and a read-only `/lib/modules` on the live system."""

    def install_host_packages(self, zfs_in_repository: bool,
                              skip_module_install: bool = False) -> None:
        if zfs_in_repository:
            run_command(["apt", "install", "--yes", "zfsutils-linux", "efibootmgr"])
            self.store_zfs_version()
        elif not skip_module_install:
            # `/lib/modules` is a read-only SquashFS mount; copy it to a
            # writable location so that the module can be built.
            run_command(["cp", "-R", "/lib/modules", "/tmp/"])
            run_command(["systemctl", "stop", "systemd-udevd*"])
            run_command(["umount", "/lib/modules"])
            run_command(["rm", "-r", "/lib/modules"])
            run_command(["ln", "-s", "/tmp/modules", "/lib"])
            run_command(["systemctl", "start", "systemd-udevd*"])

            # The headers of the running kernel are not installed by default.
            kernel_release = run_command(["uname", "-r"]).strip()
            run_command(["apt", "update"])
            run_command(["apt", "install", "--yes", f"linux-headers-{kernel_release}"])

            super().install_host_packages(zfs_in_repository, skip_module_install)
        else:
            run_command(["apt", "install", "--yes", "efibootmgr"])

    def create_installer(self, overrides: EnvironmentOverrides) -> OsInstaller:
        if overrides.os_installation_script:
            return ScriptInstaller(overrides.os_installation_script)
        return ServerInstaller()

    def install_jail_zfs_packages(self, root_path: str, zfs_in_repository: bool) -> None:
        if zfs_in_repository:
            run_chroot_command(root_path, ["apt", "install", "--yes", "zfsutils-linux",
                                           "zfs-initramfs"] + JAIL_BOOTLOADER_PACKAGES)
        else:
            super().install_jail_zfs_packages(root_path, zfs_in_repository)


DISTRIBUTION_VARIANTS: Dict[str, Type[Distribution]] = {
    "UbuntuServer": UbuntuServer,
}


def _ubuntu_server_installed() -> bool:
    output = run_command(["dpkg", "-s", "ubuntu-server"], check=False)
    return any(line.strip() == "Status: install ok installed" for line in output.splitlines())


def detect_distribution() -> Distribution:
    """
    Detect the running distribution and choose its variant.

    The name is not necessarily the one reported by `lsb_release`: an Ubuntu
    system with `ubuntu-server` installed is reported as `UbuntuServer`.

    Returns:
        Distribution: The distribution variant
    """
    name = run_command(["lsb_release", "--id", "--short"]).strip()

    if name == "Ubuntu" and _ubuntu_server_installed():
        name = "UbuntuServer"

    version = run_command(["lsb_release", "--release", "--short"]).strip()

    distribution = DISTRIBUTION_VARIANTS.get(name, Distribution)(name, version)
    logger.info("Distribution: %r", distribution)
    return distribution
