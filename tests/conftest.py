import pytest

from zfsinstall.config import DEFAULT_BPOOL_TWEAKS, DEFAULT_RPOOL_TWEAKS
from zfsinstall.plan import InstallationPlan, RaidType, parse_pool_tweaks

DISK = "/dev/disk/by-id/ata-VBOX_HARDDISK_VB0123"


class CommandRecorder:
    """Stand-in for `run_command`; records the calls and replies from a table."""

    def __init__(self, outputs=None):
        self.calls = []
        self.outputs = outputs or {}

    def __call__(self, command, input_text=None, check=True, env=None):
        self.calls.append((list(command), input_text))
        return self.outputs.get(tuple(command), "")

    @property
    def commands(self):
        return [command for command, _ in self.calls]


@pytest.fixture
def recorder():
    return CommandRecorder()


def make_plan(swap_size=0, free_tail_space=0, raid_type=RaidType.NONE):
    return InstallationPlan(
        disk=DISK,
        swap_size=swap_size,
        bpool_name="bpool",
        rpool_name="rpool",
        bpool_tweaks=parse_pool_tweaks(DEFAULT_BPOOL_TWEAKS),
        rpool_tweaks=parse_pool_tweaks(DEFAULT_RPOOL_TWEAKS),
        raid_type=raid_type,
        free_tail_space=free_tail_space,
        no_info_messages=True,
    )
