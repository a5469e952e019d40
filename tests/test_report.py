import pytest

from easytask.local.supervisor import report
from easytask.local.supervisor.report import build_status_report, format_uptime


@pytest.fixture()
def record():
    return {
        "prefix": "EasyTask",
        "platform": "posix",
        "can_async": True,
        "master": 100,
        "started_at": 1000.0,
        "tasks": {
            "k1": {"alias": "heartbeat", "interval": 2, "replicas": 3, "workers": [
                {"pid": 101, "replica": 0, "created": None},
                {"pid": 102, "replica": 1, "created": None},
                {"pid": 103, "replica": 2, "created": None},
            ]},
            "k2": {"alias": "cleanup", "interval": 60, "replicas": 1, "workers": [{"pid": 104, "replica": 0, "created": None}]},
        },
    }


@pytest.fixture()
def dead_pids(monkeypatch):
    dead = set()
    monkeypatch.setattr(report.process_utils, "is_alive", lambda pid, created=None: pid not in dead)
    monkeypatch.setattr(
        report.process_utils, "get_proc_status_string",
        lambda pid: "stopped" if pid in dead else "sleeping",
    )
    return dead


@pytest.mark.parametrize("seconds, expected", [
    (0, "00:00:00"),
    (3725, "01:02:05"),
    (90061, "1d 01:01:01"),
    (-5, "00:00:00"),
])
def test_format_uptime(seconds, expected):
    assert format_uptime(seconds) == expected


def test_report_with_every_worker_alive(record, dead_pids):
    text = build_status_report(record, now=1065.0)

    assert text.startswith("--- EasyTask Status ---")
    assert "Status: RUNNING" in text
    assert "Platform: posix" in text
    assert "Uptime: 00:01:05" in text
    assert "heartbeat" in text and "3/3 replicas alive" in text
    assert "interval 60s" in text
    assert "TOTAL: 4/4 workers alive" in text
    assert text.count("Status: SLEEPING") == 4


def test_report_counts_dead_workers(record, dead_pids):
    dead_pids.update({102, 104})

    text = build_status_report(record, now=1000.0)

    assert "2/3 replicas alive" in text
    assert "0/1 replicas alive" in text
    assert "Status: STOPPED" in text
    assert "TOTAL: 2/4 workers alive" in text


def test_report_for_dead_master(record, dead_pids):
    dead_pids.add(100)
    assert "Master PID 100      | Status: STOPPED" in build_status_report(record, now=1000.0)


def test_workers_are_labelled_by_replica_index(record, dead_pids):
    # Replica 1 was never started, so the record skips from #0 to #2.
    record["tasks"]["k1"]["workers"] = [
        {"pid": 101, "replica": 0, "created": None},
        {"pid": 103, "replica": 2, "created": None},
    ]

    text = build_status_report(record, now=1000.0)

    assert "#0 PID 101 " in text
    assert "#2 PID 103 " in text
    assert "#1 PID" not in text
    assert "2/3 replicas alive" in text


def test_reused_pid_is_reported_stopped(record, monkeypatch):
    monkeypatch.setattr(
        report.process_utils, "is_alive",
        lambda pid, created=None: not (pid == 104 and created is not None),
    )
    monkeypatch.setattr(report.process_utils, "get_proc_status_string", lambda pid: "sleeping")
    record["tasks"]["k2"]["workers"][0]["created"] = 1.0

    text = build_status_report(record, now=1000.0)

    assert "0/1 replicas alive" in text
    assert "#0 PID 104      | Status: STOPPED" in text
