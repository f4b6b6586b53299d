"""
Plan Module

This module contains the data types describing an installation: the
parameters collected from the user, the pool tweaks, and the partition
layout.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

POOL_PROPERTY_FLAG = "-o"
FILESYSTEM_PROPERTY_FLAG = "-O"
# Disables all the features; they're enabled back one by one with `-o feature@...`.
NO_FEATURES_FLAG = "-d"

# Always set by the installer.
RESERVED_PROPERTIES = ("devices",)


@dataclass(frozen=True)
class PoolTweak:
    """A single `zpool create` option, e.g. `-O compression=lz4`, or `-d`."""
    flag: str
    value: str = ""

    def tokens(self) -> List[str]:
        return [self.flag, self.value] if self.value else [self.flag]


def parse_pool_tweaks(raw_tweaks: str) -> Tuple[PoolTweak, ...]:
    """
    Parse a tweaks string into options.

    The string is split once, here; the result is passed around as discrete
    tokens and never joined back.

    Args:
        raw_tweaks: Options in the form `[-d] -o prop=value -O prop=value ...`

    Returns:
        Tuple[PoolTweak, ...]: The parsed options, in order

    Raises:
        ValueError: If a token is not a valid option
    """
    tokens = raw_tweaks.split()
    tweaks = []

    position = 0
    while position < len(tokens):
        flag = tokens[position]
        position += 1

        if flag == NO_FEATURES_FLAG:
            tweaks.append(PoolTweak(flag))
            continue

        if flag not in (POOL_PROPERTY_FLAG, FILESYSTEM_PROPERTY_FLAG):
            raise ValueError(f"Invalid pool tweak flag: {flag!r}")
        if position == len(tokens):
            raise ValueError(f"Missing value for the pool tweak flag {flag!r}")

        value = tokens[position]
        position += 1

        name, sep, setting = value.partition("=")
        if not name or not sep or not setting:
            raise ValueError(f"Invalid pool tweak value: {value!r}")
        if name in RESERVED_PROPERTIES:
            raise ValueError(f"The option `{name}` is set by the installer, and must not be specified")
        tweaks.append(PoolTweak(flag, value))

    return tuple(tweaks)


class RaidType(Enum):
    NONE = ""
    MIRROR = "mirror"
    RAIDZ = "raidz"
    RAIDZ2 = "raidz2"
    RAIDZ3 = "raidz3"

    @classmethod
    def parse(cls, value: str) -> "RaidType":
        try:
            return cls(value.strip())
        except ValueError:
            raise ValueError(f"Invalid RAID type: {value!r}") from None

    def tokens(self) -> List[str]:
        """Positional modifier inserted between the pool name and its devices."""
        return [self.value] if self.value else []

    @property
    def min_devices(self) -> int:
        """Number of devices `zpool create` requires for this topology."""
        return {
            RaidType.NONE: 1,
            RaidType.MIRROR: 2,
            RaidType.RAIDZ: 2,
            RaidType.RAIDZ2: 3,
            RaidType.RAIDZ3: 4,
        }[self]


@dataclass(frozen=True)
class InstallationPlan:
    """
    Parameters of an installation, fixed before partitioning begins.

    The passphrase is not part of the plan; it lives in the
    `PassphraseChannel` so that the plan can be printed and logged.
    """
    disk: str
    swap_size: int
    bpool_name: str
    rpool_name: str
    bpool_tweaks: Tuple[PoolTweak, ...]
    rpool_tweaks: Tuple[PoolTweak, ...]
    raid_type: RaidType = RaidType.NONE
    free_tail_space: int = 0
    no_info_messages: bool = False

    def __post_init__(self):
        if self.swap_size < 0:
            raise ValueError(f"Invalid swap size: {self.swap_size}")
        if self.free_tail_space < 0:
            raise ValueError(f"Invalid free tail space: {self.free_tail_space}")

    @property
    def swap_enabled(self) -> bool:
        return self.swap_size > 0


class PartitionRole(Enum):
    EFI = "efi"
    SWAP = "swap"
    BOOT_POOL = "bpool"
    ROOT_POOL = "rpool"
    TEMP = "temp"


@dataclass(frozen=True)
class PartitionSpec:
    """One partition; `start`/`end` use sgdisk position syntax."""
    index: int
    start: str
    end: str
    type_code: str
    role: PartitionRole


@dataclass(frozen=True)
class PartitionPaths:
    efi: str
    bpool: str
    rpool: str
    temp: str
    swap: Optional[str] = None


@dataclass(frozen=True)
class PartitionTable:
    disk: str
    partitions: Tuple[PartitionSpec, ...]

    def __post_init__(self):
        roles = [partition.role for partition in self.partitions]
        if len(set(roles)) != len(roles):
            raise ValueError("Each partition role must appear once")

    def index_of(self, role: PartitionRole) -> int:
        for partition in self.partitions:
            if partition.role is role:
                return partition.index
        raise KeyError(role)

    def has(self, role: PartitionRole) -> bool:
        return any(partition.role is role for partition in self.partitions)

    def path_of(self, role: PartitionRole) -> str:
        return partition_path(self.disk, self.index_of(role))

    def paths(self) -> PartitionPaths:
        return PartitionPaths(
            efi=self.path_of(PartitionRole.EFI),
            bpool=self.path_of(PartitionRole.BOOT_POOL),
            rpool=self.path_of(PartitionRole.ROOT_POOL),
            temp=self.path_of(PartitionRole.TEMP),
            swap=self.path_of(PartitionRole.SWAP) if self.has(PartitionRole.SWAP) else None,
        )


def partition_path(disk: str, index: int) -> str:
    """Path of a partition of a `/dev/disk/by-id` disk."""
    return f"{disk}-part{index}"
