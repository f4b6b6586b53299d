from zfsinstall import exit_operations
from zfsinstall.exit_operations import prepare_for_system_exit


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = 0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps += 1
        self.now += seconds


def test_lingering_mount_is_reissued_once_and_pools_exported(monkeypatch, recorder):
    monkeypatch.setattr(exit_operations, "run_command", recorder)
    clock = FakeClock()

    reissued = prepare_for_system_exit("/mnt", max_wait=5, sleep=clock.sleep, clock=clock,
                                       mounted=lambda path: path == "/mnt/dev")

    assert reissued == ["/mnt/dev"]
    umounts = [command[-1] for command in recorder.commands if command[0] == "umount"]
    assert umounts == ["/mnt/dev", "/mnt/sys", "/mnt/proc", "/mnt/dev"]
    assert recorder.commands[-1] == ["zpool", "export", "-a"]
    assert clock.now <= 5


def test_nothing_mounted(monkeypatch, recorder):
    monkeypatch.setattr(exit_operations, "run_command", recorder)
    clock = FakeClock()

    reissued = prepare_for_system_exit("/mnt", sleep=clock.sleep, clock=clock,
                                       mounted=lambda path: False)

    assert reissued == []
    assert clock.sleeps == 0
    assert len(recorder.commands) == 4
    assert recorder.commands[-1] == ["zpool", "export", "-a"]


def test_mounts_going_away_while_waiting(monkeypatch, recorder):
    monkeypatch.setattr(exit_operations, "run_command", recorder)
    clock = FakeClock()

    reissued = prepare_for_system_exit("/mnt", sleep=clock.sleep, clock=clock,
                                       mounted=lambda path: clock.now < 1)

    assert reissued == []
    assert clock.sleeps == 2
