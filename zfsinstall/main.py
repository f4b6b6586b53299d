"""
Main Module

This module serves as the entry point for the ZFS installer.
It orchestrates the installation process by calling functions from other modules.
"""

import subprocess
import sys
from typing import List, Optional

from rich.console import Console
from rich.markup import escape

from zfsinstall import config
from zfsinstall.command import SettlePolicy
from zfsinstall.config import EnvironmentOverrides, load_overrides
from zfsinstall.disk_operations import find_suitable_disks, select_disk
from zfsinstall.distributions import Distribution, detect_distribution
from zfsinstall.errors import InstallerError
from zfsinstall.exit_operations import prepare_for_system_exit
from zfsinstall.jail_operations import (configure_boot_pool_import,
                                        configure_pools_trimming,
                                        configure_remaining_settings,
                                        install_and_configure_bootloader,
                                        install_jail_zfs_packages,
                                        prepare_jail)
from zfsinstall.logging_utils import (activate_debug, print_step_info_header,
                                      store_running_processes)
from zfsinstall.os_operations import stage_os, sync_os_to_pool
from zfsinstall.partition_operations import (reclaim_partition,
                                             setup_partitions)
from zfsinstall.passphrase import PassphraseChannel
from zfsinstall.plan import InstallationPlan
from zfsinstall.prompt_operations import collect_plan
from zfsinstall.system_operations import (check_prerequisites,
                                          display_exit_banner,
                                          display_intro_banner,
                                          find_zfs_package_requirements,
                                          install_host_tools)
from zfsinstall.zfs_operations import create_pools, create_zfs_datasets

# Initialize a rich console for colored output
console = Console()

HELP = f"""Usage: zfs-installer [-h|--help]

Sets up and installs a ZFS Ubuntu installation.

This script needs to be run with admin permissions, from a Live CD.

The procedure can be entirely automated via environment variables:

- ZFS_OS_INSTALLATION_SCRIPT : path of a script to execute instead of the distribution installer
- ZFS_PASSPHRASE             : set non-blank to encrypt the root pool, and blank not to; if unset, it will be asked
- ZFS_BPOOL_NAME             : boot pool name (defaults to `{config.DEFAULT_BPOOL_NAME}`)
- ZFS_RPOOL_NAME             : root pool name (defaults to `{config.DEFAULT_RPOOL_NAME}`)
- ZFS_BPOOL_TWEAKS           : boot pool options to set on creation (defaults to `{config.DEFAULT_BPOOL_TWEAKS}`)
- ZFS_RPOOL_TWEAKS           : root pool options to set on creation (defaults to `{config.DEFAULT_RPOOL_TWEAKS}`)
- ZFS_POOLS_RAID_TYPE        : blank or unset (striping); `mirror` and `raidz*` need more devices than a single disk provides
- ZFS_NO_INFO_MESSAGES       : set to skip informational messages
- ZFS_SWAP_SIZE              : swap size in GiB (integer); set 0 for no swap
- ZFS_FREE_TAIL_SPACE        : free space in GiB to leave at the end of the disk (integer)
- ZFS_SELECTED_DISK          : `/dev/disk/by-id` path of the disk to install to; if unset, it will be asked

- ZFS_SKIP_LIVE_ZFS_MODULE_INSTALL : (debug) set 1 to skip installing the ZFS module on the live system

The custom installation script is invoked with the temporary volume device and
the staging directory (`{config.INSTALLED_OS_MOUNT_DIR}`) as arguments, also available as
ZFS_TEMP_VOLUME_DEVICE and ZFS_STAGING_MOUNT_DIR. It must install the O/S on the
device, and leave no swap or file locks on it.
"""


def run_installation(plan: InstallationPlan, distribution: Distribution,
                     passphrase_channel: PassphraseChannel, zfs_in_repository: bool,
                     overrides: EnvironmentOverrides,
                     settle_policy: Optional[SettlePolicy] = None) -> None:
    """
    Run the destructive part of the procedure, from the host tools to the pools export.

    Every step runs once, in order; any failure aborts the procedure. The
    passphrase is dropped from the channel on the way out.

    Args:
        plan: Installation parameters
        distribution: Running distribution
        passphrase_channel: Holder of the encryption passphrase
        zfs_in_repository: The repository ships a suitable ZFS version
        overrides: Environment settings
        settle_policy: Wait policy for the partition device nodes
    """
    try:
        print_step_info_header("install_host_tools")
        install_host_tools(distribution, zfs_in_repository, overrides)

        print_step_info_header("setup_partitions")
        table, temp_volume_device = setup_partitions(plan, settle_policy)
        paths = table.paths()

        print_step_info_header("create_pools")
        create_pools(plan, paths, passphrase_channel)

        print_step_info_header("create_zfs_datasets")
        create_zfs_datasets(plan.rpool_name)

        print_step_info_header("install_operating_system")
        stage_os(distribution.create_installer(overrides), temp_volume_device)

        print_step_info_header("sync_os_temp_installation_dir_to_rpool")
        sync_os_to_pool()

        print_step_info_header("remove_temp_partition_and_expand_rpool")
        reclaim_partition(plan, table)

        print_step_info_header("prepare_jail")
        prepare_jail()

        print_step_info_header("install_jail_zfs_packages")
        install_jail_zfs_packages(distribution, zfs_in_repository)

        print_step_info_header("install_and_configure_bootloader")
        install_and_configure_bootloader(plan, paths)

        print_step_info_header("configure_boot_pool_import")
        configure_boot_pool_import(plan)

        print_step_info_header("configure_pools_trimming")
        configure_pools_trimming(plan)

        print_step_info_header("configure_remaining_settings")
        configure_remaining_settings(plan, paths)

        print_step_info_header("prepare_for_system_exit")
        prepare_for_system_exit()
    finally:
        passphrase_channel.clear()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function to run the installer.
    """
    if argv is None:
        argv = sys.argv[1:]

    if argv:
        console.print(HELP, markup=False, highlight=False)
        return 0

    console.print("[bold blue]ZFS Installer[/bold blue]")
    console.print("This script will install Ubuntu on ZFS boot and root pools.")
    console.print(
        "Please make sure you have a backup of any important data before proceeding.")

    activate_debug()

    try:
        distribution = detect_distribution()
        distribution.store_os_information()
        store_running_processes()

        overrides = load_overrides()

        # Check prerequisites
        if not check_prerequisites(distribution, overrides):
            console.print("[bold red]Prerequisites not met. Exiting.[/bold red]")
            return 1

        display_intro_banner(overrides.no_info_messages)

        disks = find_suitable_disks()
        zfs_in_repository = find_zfs_package_requirements()

        # Select disk
        disk = select_disk(disks, overrides.selected_disk)
        if not disk:
            console.print("[bold red]No disk selected. Exiting.[/bold red]")
            return 1

        passphrase_channel = PassphraseChannel()
        plan = collect_plan(disk, passphrase_channel, overrides)

        run_installation(plan, distribution, passphrase_channel, zfs_in_repository, overrides)
    except InstallerError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        return 1
    except subprocess.CalledProcessError as e:
        details = f": {e.stderr.strip()}" if e.stderr else ""
        console.print(f"[bold red]Error:[/bold red] "
                      + escape(f"Command {' '.join(map(str, e.cmd))} failed with exit code {e.returncode}{details}"))
        console.print(f"The install transcript is at {config.INSTALL_LOG}.")
        return 1
    except KeyboardInterrupt:
        console.print("\n[bold yellow]Installation cancelled by user.[/bold yellow]")
        return 130

    display_exit_banner(overrides.no_info_messages)
    return 0


if __name__ == "__main__":
    sys.exit(main())
