import subprocess
from types import SimpleNamespace

import pytest

from zfsinstall import command
from zfsinstall.command import (SettlePolicy, run_chroot_command, run_command,
                                udev_settle)


def test_run_command_returns_stdout(monkeypatch):
    seen = {}

    def fake_run(cmd, **kwargs):
        seen.update(kwargs, cmd=cmd)
        return SimpleNamespace(returncode=0, stdout="out\n", stderr="")

    monkeypatch.setattr(command.subprocess, "run", fake_run)

    assert run_command(["zpool", "create"], input_text="secret") == "out\n"
    assert seen["cmd"] == ["zpool", "create"]
    assert seen["input"] == "secret"
    assert seen["env"] is None


def test_run_command_merges_env(monkeypatch):
    seen = {}

    def fake_run(cmd, **kwargs):
        seen.update(kwargs)
        return SimpleNamespace(returncode=0, stdout="", stderr="")

    monkeypatch.setattr(command.subprocess, "run", fake_run)
    monkeypatch.setenv("PATH", "/usr/sbin:/usr/bin")

    run_command(["ubiquity"], env={"DISPLAY": ":0"})

    assert seen["env"]["DISPLAY"] == ":0"
    assert seen["env"]["PATH"] == "/usr/sbin:/usr/bin"


def test_run_command_raises_on_failure(monkeypatch):
    monkeypatch.setattr(command.subprocess, "run",
                        lambda cmd, **kwargs: SimpleNamespace(returncode=2, stdout="", stderr="boom"))

    with pytest.raises(subprocess.CalledProcessError) as excinfo:
        run_command(["sgdisk", "-n1"])
    assert excinfo.value.returncode == 2
    assert excinfo.value.stderr == "boom"

    assert run_command(["sgdisk", "-n1"], check=False) == ""


def test_passphrase_is_not_logged(monkeypatch, caplog):
    monkeypatch.setattr(command.subprocess, "run",
                        lambda cmd, **kwargs: SimpleNamespace(returncode=0, stdout="", stderr=""))

    with caplog.at_level("DEBUG"):
        run_command(["zpool", "create", "rpool"], input_text="abcdefgh")

    assert "zpool create rpool" in caplog.text
    assert "abcdefgh" not in caplog.text


def test_run_chroot_command(monkeypatch):
    calls = []
    monkeypatch.setattr(command, "run_command", lambda cmd, **kwargs: calls.append(cmd) or "")

    run_chroot_command("/mnt", ["update-grub"])

    assert calls == [["chroot", "/mnt", "update-grub"]]


def _no_sleep_policy(exists, attempts=3):
    sleeps = []
    policy = SettlePolicy(timeout=1, attempts=attempts, interval=0.1,
                          sleep=sleeps.append, exists=exists)
    return policy, sleeps


def test_udev_settle_waits_for_paths(monkeypatch):
    monkeypatch.setattr(command, "run_command", lambda cmd, **kwargs: "")
    appearing = iter([False, False, True])
    policy, sleeps = _no_sleep_policy(lambda path: next(appearing))

    assert udev_settle(policy, ["/dev/disk/by-id/x-part1"])
    assert sleeps == [0.1, 0.1]


def test_udev_settle_timeout_is_a_warning(monkeypatch):
    def settle_timeout(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd)

    monkeypatch.setattr(command, "run_command", settle_timeout)
    policy, sleeps = _no_sleep_policy(lambda path: False)

    assert not udev_settle(policy, ["/dev/disk/by-id/x-part1"])
    assert len(sleeps) == 3
