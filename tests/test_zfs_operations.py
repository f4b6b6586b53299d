import pytest

from zfsinstall import zfs_operations
from zfsinstall.partition_operations import plan_partitions
from zfsinstall.passphrase import PassphraseChannel
from zfsinstall.plan import RaidType
from zfsinstall.zfs_operations import (DATASETS, build_bpool_create_command,
                                       build_rpool_create_command, create_pools,
                                       create_zfs_datasets)

from conftest import DISK, make_plan


def _create(monkeypatch, recorder, plan, passphrase):
    monkeypatch.setattr(zfs_operations, "run_command", recorder)
    channel = PassphraseChannel()
    if passphrase is not None:
        channel.write(passphrase)
    paths = plan_partitions(plan.disk, plan.swap_size).paths()
    encrypted = create_pools(plan, paths, channel)
    return channel, encrypted


def test_rpool_is_created_before_bpool(monkeypatch, recorder):
    _create(monkeypatch, recorder, make_plan(), "")

    pool_names = [command[command.index("-f") + 1] for command in recorder.commands]
    assert pool_names == ["rpool", "bpool"]


def test_blank_passphrase_disables_encryption(monkeypatch, recorder):
    _, encrypted = _create(monkeypatch, recorder, make_plan(), "")

    assert not encrypted
    for command, input_text in recorder.calls:
        assert "encryption=on" not in command
        assert input_text is None


def test_unset_passphrase_disables_encryption(monkeypatch, recorder):
    _, encrypted = _create(monkeypatch, recorder, make_plan(), None)

    assert not encrypted
    assert all(input_text is None for _, input_text in recorder.calls)


def test_passphrase_encrypts_rpool_only(monkeypatch, recorder):
    channel, encrypted = _create(monkeypatch, recorder, make_plan(swap_size=2), "abcdefgh")

    assert encrypted
    (rpool_command, rpool_input), (bpool_command, bpool_input) = recorder.calls

    assert rpool_command[2:8] == zfs_operations.ENCRYPTION_OPTIONS
    assert rpool_input == "abcdefgh"
    assert rpool_command[-1] == f"{DISK}-part4"

    assert "encryption=on" not in bpool_command
    assert bpool_input is None
    assert bpool_command[-1] == f"{DISK}-part3"

    # Still available after the pool creation.
    assert channel.read() == "abcdefgh"
    assert channel.read() == "abcdefgh"


def test_passphrase_is_restored_on_failure(monkeypatch):
    class PoolCreationError(Exception):
        pass

    def failing(command, input_text=None, check=True, env=None):
        raise PoolCreationError()

    monkeypatch.setattr(zfs_operations, "run_command", failing)
    channel = PassphraseChannel()
    channel.write("abcdefgh")

    with pytest.raises(PoolCreationError):
        create_pools(make_plan(), plan_partitions(DISK, 0).paths(), channel)

    assert channel.read() == "abcdefgh"


def test_tweaks_and_options_precede_the_pool_name():
    plan = make_plan()
    command = build_rpool_create_command(plan, ["part"], encrypted=False)

    pool_index = command.index("rpool")
    assert command[:pool_index][-7:] == ["-O", "devices=off", "-O", "mountpoint=/", "-R", "/mnt", "-f"]
    assert command[2:4] == ["-o", "ashift=12"]
    assert "compression=lz4" in command[:pool_index]
    assert command[pool_index + 1:] == ["part"]


def test_raid_type_sits_between_pool_name_and_devices():
    plan = make_plan(raid_type=RaidType.MIRROR)
    command = build_rpool_create_command(plan, ["part-a", "part-b"], encrypted=False)

    pool_index = command.index("rpool")
    assert command[pool_index + 1:] == ["mirror", "part-a", "part-b"]


def test_datasets_parents_first(monkeypatch, recorder):
    monkeypatch.setattr(zfs_operations, "run_command", recorder)

    create_zfs_datasets("rpool")

    created = [command[-1] for command in recorder.commands]
    assert len(created) == len(DATASETS)
    for position, name in enumerate(created):
        parent = name.rsplit("/", 1)[0]
        if parent != "rpool":
            assert parent in created[:position]


def test_usr_dataset_is_not_mounted(monkeypatch, recorder):
    monkeypatch.setattr(zfs_operations, "run_command", recorder)

    create_zfs_datasets("tank")

    assert ["zfs", "create", "-o", "canmount=off", "tank/usr"] in recorder.commands
    assert ["zfs", "create", "-o", "mountpoint=/home", "tank/home"] in recorder.commands


def test_boot_pool_features_are_limited_to_the_bootloader_ones():
    plan = make_plan()

    bpool_command = build_bpool_create_command(plan, [f"{DISK}-part2"])
    name_index = bpool_command.index("bpool")
    assert bpool_command.index("-d") < name_index
    assert bpool_command.index("feature@lz4_compress=enabled") < name_index
    assert bpool_command[bpool_command.index("feature@lz4_compress=enabled") - 1] == "-o"

    rpool_command = build_rpool_create_command(plan, [f"{DISK}-part3"], encrypted=False)
    assert "-d" not in rpool_command
