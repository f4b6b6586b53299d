"""
Prompt Operations Module

This module contains the functions collecting the installation parameters,
either from the environment or by prompting the user.
"""

import re
from typing import Any, Tuple

import questionary
from rich.console import Console

from zfsinstall.config import (DEFAULT_BPOOL_TWEAKS, DEFAULT_RPOOL_TWEAKS,
                               MIN_PASSPHRASE_LENGTH, EnvironmentOverrides)
from zfsinstall.errors import PreconditionError
from zfsinstall.passphrase import PassphraseChannel
from zfsinstall.plan import (InstallationPlan, PoolTweak, RaidType,
                             parse_pool_tweaks)

# Initialize a rich console for colored output
console = Console()

SIZE_REGEX = re.compile(r"^[0-9]+$")

# One partition of the selected disk backs each pool.
POOL_DEVICE_COUNT = 1


def _ask(question: Any) -> Any:
    """Ask a questionary question; a cancelled prompt aborts the installation."""
    answer = question.ask()
    if answer is None:
        raise KeyboardInterrupt
    return answer


def ask_encryption(passphrase_channel: PassphraseChannel,
                   overrides: EnvironmentOverrides) -> None:
    """
    Ask the encryption passphrase and store it in the channel.

    A blank passphrase keeps encryption disabled.

    Args:
        passphrase_channel: Destination of the passphrase
        overrides: Environment settings
    """
    if overrides.passphrase is not None:
        passphrase_channel.write(overrides.passphrase)
        return

    invalid_message = ""

    while True:
        passphrase = _ask(questionary.password(
            f"{invalid_message}Please enter the passphrase ({MIN_PASSPHRASE_LENGTH} chars min.); "
            "leave blank to keep encryption disabled:"))

        if not passphrase:
            break

        passphrase_repeat = _ask(questionary.password("Please repeat the passphrase:"))

        if passphrase == passphrase_repeat and len(passphrase) >= MIN_PASSPHRASE_LENGTH:
            break

        invalid_message = "Passphrase too short, or not matching! "

    passphrase_channel.write(passphrase)


def _parse_size(raw_size: str, description: str) -> int:
    if not SIZE_REGEX.match(raw_size.strip()):
        raise PreconditionError(f"Invalid {description}: {raw_size!r}")
    return int(raw_size.strip())


def ask_swap_size(overrides: EnvironmentOverrides) -> int:
    """
    Ask the swap size in GiB; 0 disables swap.

    Args:
        overrides: Environment settings

    Returns:
        int: The swap size
    """
    if overrides.swap_size is not None:
        return _parse_size(overrides.swap_size, "swap size")

    raw_size = _ask(questionary.text(
        "Enter the swap size in GiB (0 for no swap):",
        default="2",
        validate=lambda text: bool(SIZE_REGEX.match(text.strip())) or "Invalid swap size!"
    ))
    return int(raw_size.strip())


def ask_free_tail_space(overrides: EnvironmentOverrides) -> int:
    """Free space in GiB to leave at the end of the disk; only set via the environment."""
    if overrides.free_tail_space is None:
        return 0
    return _parse_size(overrides.free_tail_space, "free tail space")


def _validate_tweaks(text: str) -> Any:
    try:
        parse_pool_tweaks(text)
    except ValueError as e:
        return str(e)
    return True


def _ask_tweaks(preset: Any, pool_description: str, default: str) -> Tuple[PoolTweak, ...]:
    if preset is not None:
        try:
            return parse_pool_tweaks(preset)
        except ValueError as e:
            raise PreconditionError(f"Invalid {pool_description} tweaks: {e}") from e

    raw_tweaks = _ask(questionary.text(
        f"Insert the tweaks for the {pool_description} "
        "(the option `-O devices=off` is already set, and must not be specified):",
        default=default,
        validate=_validate_tweaks
    ))
    return parse_pool_tweaks(raw_tweaks)


def ask_pool_tweaks(overrides: EnvironmentOverrides) -> Tuple[Tuple[PoolTweak, ...], Tuple[PoolTweak, ...]]:
    """
    Ask the tweaks of the boot and root pools.

    Returns:
        Tuple: The boot pool tweaks and the root pool tweaks
    """
    bpool_tweaks = _ask_tweaks(overrides.bpool_tweaks, "boot pool", DEFAULT_BPOOL_TWEAKS)
    rpool_tweaks = _ask_tweaks(overrides.rpool_tweaks, "root pool", DEFAULT_RPOOL_TWEAKS)
    return bpool_tweaks, rpool_tweaks


def ask_raid_type(overrides: EnvironmentOverrides, device_count: int = POOL_DEVICE_COUNT) -> RaidType:
    """
    Read the pools RAID type; blank or unset means striping.

    There's no prompt: with a single disk, striping is the only topology
    `zpool create` accepts.

    Args:
        overrides: Environment settings
        device_count: Number of devices backing each pool

    Returns:
        RaidType: The validated RAID type

    Raises:
        PreconditionError: If the type is unknown, or needs more devices
    """
    if overrides.pools_raid_type is None:
        return RaidType.NONE

    try:
        raid_type = RaidType.parse(overrides.pools_raid_type)
    except ValueError as e:
        raise PreconditionError(str(e)) from e

    if raid_type.min_devices > device_count:
        raise PreconditionError(
            f"The RAID type `{raid_type.value}` requires at least {raid_type.min_devices} devices "
            f"per pool; {device_count} available.")

    return raid_type


def collect_plan(disk: str, passphrase_channel: PassphraseChannel,
                 overrides: EnvironmentOverrides) -> InstallationPlan:
    """
    Collect the installation parameters.

    Args:
        disk: Selected disk id
        passphrase_channel: Destination of the encryption passphrase
        overrides: Environment settings

    Returns:
        InstallationPlan: The installation parameters
    """
    ask_encryption(passphrase_channel, overrides)
    swap_size = ask_swap_size(overrides)
    free_tail_space = ask_free_tail_space(overrides)
    bpool_tweaks, rpool_tweaks = ask_pool_tweaks(overrides)
    raid_type = ask_raid_type(overrides)

    plan = InstallationPlan(
        disk=disk,
        swap_size=swap_size,
        bpool_name=overrides.bpool_name,
        rpool_name=overrides.rpool_name,
        bpool_tweaks=bpool_tweaks,
        rpool_tweaks=rpool_tweaks,
        raid_type=raid_type,
        free_tail_space=free_tail_space,
        no_info_messages=overrides.no_info_messages,
    )

    console.print(f"Installation plan: {plan}")
    console.print(f"Encryption: {'disabled' if passphrase_channel.is_empty else 'enabled'}")
    return plan
