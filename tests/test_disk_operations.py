import os

import pytest

from zfsinstall import disk_operations
from zfsinstall.disk_operations import (find_suitable_disks,
                                        list_candidate_disks, select_disk)
from zfsinstall.errors import NoSuitableDiskError, PreconditionError

PROPERTIES = {
    "sda": {"ID_TYPE": "disk", "ID_MODEL": "VBOX_HARDDISK"},
    "nvme0n1": {"ID_TYPE": "disk"},
    "sr0": {"ID_TYPE": "cd"},
}


@pytest.fixture
def by_id_dir(tmp_path):
    devices = tmp_path / "dev"
    devices.mkdir()
    by_id = tmp_path / "by-id"
    by_id.mkdir()
    for link, target in [
        ("ata-VBOX_HARDDISK_VB01", "sda"),
        ("ata-VBOX_HARDDISK_VB01-part1", "sda1"),
        ("nvme-Samsung_SSD_970", "nvme0n1"),
        ("scsi-VBOX_CD-ROM", "sr0"),
        ("usb-Kingston_DataTraveler", "sdb"),
        ("wwn-0x5000c500a1b2c3d4", "sda"),
    ]:
        (devices / target).write_text("")
        os.symlink(str(devices / target), str(by_id / link))
    return by_id


@pytest.fixture
def fake_udev(monkeypatch, recorder):
    monkeypatch.setattr(disk_operations, "run_command", recorder)
    monkeypatch.setattr(disk_operations, "get_device_properties",
                        lambda device: PROPERTIES[os.path.basename(device)])
    monkeypatch.setattr(disk_operations, "get_disk_size", lambda device: "20.0G")
    monkeypatch.setattr(disk_operations, "get_disk_model", lambda device: "VBOX")


def test_list_candidate_disks(by_id_dir):
    names = [os.path.basename(path) for path in list_candidate_disks(str(by_id_dir))]

    assert names == ["ata-VBOX_HARDDISK_VB01", "nvme-Samsung_SSD_970", "scsi-VBOX_CD-ROM"]


def test_cdroms_and_mounted_disks_are_excluded(monkeypatch, fake_udev, recorder, by_id_dir, tmp_path):
    monkeypatch.setattr(disk_operations, "get_mounted_devices", lambda: {"nvme0n1"})
    log_path = tmp_path / "disks.log"

    disks = find_suitable_disks(str(by_id_dir), str(log_path))

    assert [disk["value"] for disk in disks] == [str(by_id_dir / "ata-VBOX_HARDDISK_VB01")]
    assert disks[0]["device"] == "sda"
    assert recorder.commands[0] == ["udevadm", "trigger"]

    log = log_path.read_text()
    assert "usb-Kingston_DataTraveler ->" in log
    assert f"## DEVICE: {by_id_dir / 'scsi-VBOX_CD-ROM'}" in log
    assert "ID_TYPE=cd" in log


def test_no_suitable_disks(monkeypatch, fake_udev, by_id_dir, tmp_path):
    monkeypatch.setattr(disk_operations, "get_mounted_devices", lambda: {"sda", "nvme0n1"})

    with pytest.raises(NoSuitableDiskError) as excinfo:
        find_suitable_disks(str(by_id_dir), str(tmp_path / "disks.log"))

    assert "disk.EnableUUID" in str(excinfo.value)


def test_preset_disk_must_be_suitable():
    disks = [{"name": "ata-X (sda)", "value": "/dev/disk/by-id/ata-X", "device": "sda",
              "size": "20.0G", "model": "X"}]

    assert select_disk(disks, "/dev/disk/by-id/ata-X") == "/dev/disk/by-id/ata-X"
    with pytest.raises(PreconditionError):
        select_disk(disks, "/dev/disk/by-id/ata-Y")


def test_get_device_properties(monkeypatch):
    output = "DEVNAME=/dev/sr0\nID_TYPE=cd\nID_BUS=ata\n\n"
    monkeypatch.setattr(disk_operations, "run_command", lambda command, **kwargs: output)

    assert disk_operations.get_device_properties("/dev/sr0") == {
        "DEVNAME": "/dev/sr0", "ID_TYPE": "cd", "ID_BUS": "ata"}
