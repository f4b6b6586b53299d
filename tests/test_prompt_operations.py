from dataclasses import replace
from types import SimpleNamespace

import pytest

from zfsinstall import prompt_operations
from zfsinstall.config import EnvironmentOverrides
from zfsinstall.errors import PreconditionError
from zfsinstall.passphrase import PassphraseChannel
from zfsinstall.plan import PoolTweak, RaidType
from zfsinstall.prompt_operations import (ask_encryption, ask_raid_type,
                                          ask_swap_size, collect_plan)

UNATTENDED = EnvironmentOverrides(
    passphrase="",
    bpool_tweaks="-o ashift=12",
    rpool_tweaks="-o ashift=12 -O compression=lz4",
    pools_raid_type="",
    no_info_messages=True,
    swap_size="0",
)


def _answers(monkeypatch, name, answers):
    pending = list(answers)
    monkeypatch.setattr(prompt_operations.questionary, name,
                        lambda *args, **kwargs: SimpleNamespace(ask=lambda: pending.pop(0)))
    return pending


@pytest.fixture
def no_prompts(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("unexpected prompt")

    for name in ("password", "text", "select"):
        monkeypatch.setattr(prompt_operations.questionary, name, fail)


def test_unattended_plan(no_prompts):
    channel = PassphraseChannel()

    plan = collect_plan("/dev/disk/by-id/ata-X", channel, UNATTENDED)

    assert plan.disk == "/dev/disk/by-id/ata-X"
    assert plan.swap_size == 0
    assert not plan.swap_enabled
    assert plan.raid_type is RaidType.NONE
    assert plan.rpool_tweaks == (PoolTweak("-o", "ashift=12"), PoolTweak("-O", "compression=lz4"))
    assert channel.is_set and channel.is_empty


def test_environment_passphrase_is_stored(no_prompts):
    channel = PassphraseChannel()

    ask_encryption(channel, EnvironmentOverrides(passphrase="abcdefgh"))

    assert channel.read() == "abcdefgh"


def test_passphrase_prompt_retries_until_valid(monkeypatch):
    pending = _answers(monkeypatch, "password", ["short", "short", "abcdefgh", "abcdefgi",
                                                 "abcdefgh", "abcdefgh"])
    channel = PassphraseChannel()

    ask_encryption(channel, EnvironmentOverrides())

    assert channel.read() == "abcdefgh"
    assert pending == []


def test_blank_passphrase_prompt_disables_encryption(monkeypatch):
    _answers(monkeypatch, "password", [""])
    channel = PassphraseChannel()

    ask_encryption(channel, EnvironmentOverrides())

    assert channel.is_empty


def test_cancelled_prompt_aborts(monkeypatch):
    _answers(monkeypatch, "text", [None])

    with pytest.raises(KeyboardInterrupt):
        ask_swap_size(EnvironmentOverrides())


def test_swap_size_prompt(monkeypatch):
    _answers(monkeypatch, "text", [" 4 "])

    assert ask_swap_size(EnvironmentOverrides()) == 4


@pytest.mark.parametrize("field, value", [
    ("swap_size", "two"),
    ("swap_size", "-2"),
    ("free_tail_space", "1.5"),
    ("rpool_tweaks", "-O devices=on"),
    ("bpool_tweaks", "-o"),
    ("pools_raid_type", "raid10"),
])
def test_invalid_environment_values(no_prompts, field, value):
    overrides = replace(UNATTENDED, **{field: value})

    with pytest.raises(PreconditionError):
        collect_plan("/dev/disk/by-id/ata-X", PassphraseChannel(), overrides)


def test_unset_raid_type_stripes_without_prompting(no_prompts):
    overrides = EnvironmentOverrides(passphrase="", bpool_tweaks="-o ashift=12",
                                     rpool_tweaks="-o ashift=12", swap_size="2")

    plan = collect_plan("/dev/disk/by-id/ata-X", PassphraseChannel(), overrides)

    assert plan.raid_type is RaidType.NONE
    assert plan.swap_size == 2


@pytest.mark.parametrize("raid_type", ["mirror", "raidz", "raidz2", "raidz3"])
def test_redundant_raid_types_need_more_than_one_disk(no_prompts, raid_type):
    overrides = replace(UNATTENDED, pools_raid_type=raid_type)

    with pytest.raises(PreconditionError, match="requires at least"):
        collect_plan("/dev/disk/by-id/ata-X", PassphraseChannel(), overrides)


def test_raid_type_fits_the_device_count():
    overrides = EnvironmentOverrides(pools_raid_type="mirror")

    assert ask_raid_type(overrides, device_count=2) is RaidType.MIRROR
    assert ask_raid_type(EnvironmentOverrides(pools_raid_type=" ")) is RaidType.NONE
