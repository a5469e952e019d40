import os
import sys
import time
import subprocess

import psutil
import pytest

from easytask.errors import NotRunning
from easytask.local.registry import TaskRegistry
from easytask.local.supervisor import persistence, process_utils
from easytask.local.supervisor.base import WorkerHandle


def noop():
    pass


@pytest.fixture()
def registry():
    return (
        TaskRegistry()
        .register_function(noop, "heartbeat", interval=2, replicas=2)
        .register_function(noop, "cleanup", interval=5)
    )


def make_record(runtime_config, registry, master_pid, master_created=None):
    tasks = list(registry)
    handles = [
        WorkerHandle(pid=102, key=tasks[0].key, alias="heartbeat", replica=1, created=12.5),
        WorkerHandle(pid=101, key=tasks[0].key, alias="heartbeat", replica=0, created=12.0),
        WorkerHandle(pid=103, key=tasks[1].key, alias="cleanup", replica=0),
    ]
    return persistence.build_control_record(
        runtime_config, master_pid, 1000.0, tasks, handles, master_created=master_created
    )


@pytest.fixture()
def bystander():
    """A process that has nothing to do with any supervisor."""
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    yield proc
    proc.kill()
    proc.wait(timeout=10)


def test_control_record_round_trip(runtime_config, registry):
    record = make_record(runtime_config, registry, os.getpid())
    persistence.write_control_record(runtime_config, record)

    loaded = persistence.read_control_record(runtime_config)
    assert loaded == record
    assert loaded["prefix"] == runtime_config.prefix
    assert loaded["platform"] == runtime_config.platform

    heartbeat = next(t for t in loaded["tasks"].values() if t["alias"] == "heartbeat")
    assert heartbeat == {
        "alias": "heartbeat",
        "interval": 2,
        "replicas": 2,
        "workers": [
            {"pid": 101, "replica": 0, "created": 12.0},
            {"pid": 102, "replica": 1, "created": 12.5},
        ],
    }
    assert not list(runtime_config.runtime_dir.glob("*.tmp"))


def test_recorded_pids_lists_workers_then_master(runtime_config, registry):
    record = make_record(runtime_config, registry, 100)
    assert persistence.recorded_pids(record) == [101, 102, 103, 100]


@pytest.mark.parametrize("content", [
    b"\xff\xfe\x00garbage",
    b"{not json",
    b"[1, 2, 3]",
    b'{"prefix": "x", "master": "abc", "tasks": {}}',
    b'{"master": true, "tasks": {}}',
    b'{"master": 100, "master_created": "yesterday", "tasks": {}}',
    b'{"master": 100}',
    b'{"master": 100, "tasks": []}',
    b'{"master": 100, "tasks": {"k": []}}',
    b'{"master": 100, "tasks": {"k": {"workers": 5}}}',
    b'{"master": 100, "tasks": {"k": {"workers": [101]}}}',
    b'{"master": 100, "tasks": {"k": {"workers": [{"pid": "101", "replica": 0}]}}}',
    b'{"master": 100, "tasks": {"k": {"workers": [{"pid": 101, "replica": false}]}}}',
])
def test_malformed_record_is_discarded(runtime_config, content):
    path = persistence.pid_file_path(runtime_config)
    path.write_bytes(content)

    assert persistence.read_control_record(runtime_config) is None
    assert not path.exists()


def test_undecodable_record_reads_as_not_running(task):
    persistence.pid_file_path(task.config).write_bytes(b"\xff\xfe\x00garbage")

    with pytest.raises(NotRunning):
        task.status()
    persistence.pid_file_path(task.config).write_bytes(b"\xff\xfe\x00garbage")
    with pytest.raises(NotRunning):
        task.stop(force=True)


def test_require_running_without_record(runtime_config):
    with pytest.raises(NotRunning):
        persistence.require_running(runtime_config)


def test_require_running_returns_live_record(runtime_config, registry):
    me = os.getpid()
    record = make_record(runtime_config, registry, me, master_created=psutil.Process(me).create_time())
    persistence.write_control_record(runtime_config, record)

    assert persistence.require_running(runtime_config)["master"] == me


def test_stale_record_is_removed(runtime_config, registry, monkeypatch):
    monkeypatch.setattr(persistence.process_utils, "is_alive", lambda pid, created=None: False)
    persistence.write_control_record(runtime_config, make_record(runtime_config, registry, 4242))
    persistence.request_shutdown(runtime_config)

    with pytest.raises(NotRunning, match="stale"):
        persistence.require_running(runtime_config)

    assert not persistence.pid_file_path(runtime_config).exists()
    assert not persistence.shutdown_signal_path(runtime_config).exists()


def reused_pid_record(config, pid):
    """A record whose master and worker PIDs now belong to a newer process."""
    created = psutil.Process(pid).create_time() - 100
    return {
        "prefix": config.prefix,
        "platform": config.platform,
        "can_async": config.can_async,
        "master": pid,
        "master_created": created,
        "started_at": time.time() - 100,
        "tasks": {
            "k": {"alias": "job", "interval": 1, "replicas": 1,
                  "workers": [{"pid": pid, "replica": 0, "created": created}]},
        },
    }


def test_reused_master_pid_is_stale_and_never_signalled(task, bystander):
    persistence.write_control_record(task.config, reused_pid_record(task.config, bystander.pid))

    with pytest.raises(NotRunning, match="stale"):
        task.status()

    time.sleep(0.2)
    assert bystander.poll() is None
    assert persistence.read_control_record(task.config) is None


def test_forced_stop_kills_only_recorded_processes(task, bystander):
    master = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    try:
        record = reused_pid_record(task.config, bystander.pid)
        record["master"] = master.pid
        record["master_created"] = psutil.Process(master.pid).create_time()
        persistence.write_control_record(task.config, record)

        assert persistence.verified_pids(record) == [master.pid]
        task.stop(force=True)

        assert not process_utils.is_alive(master.pid)
        assert bystander.poll() is None
        assert persistence.read_control_record(task.config) is None
    finally:
        if master.poll() is None:
            master.kill()
            master.wait(timeout=10)


def test_shutdown_signal_file(runtime_config):
    assert not persistence.check_for_shutdown_signal(runtime_config)
    persistence.request_shutdown(runtime_config)
    assert persistence.check_for_shutdown_signal(runtime_config)

    persistence.cleanup_control_files(runtime_config)
    assert not persistence.check_for_shutdown_signal(runtime_config)


def test_status_report_is_consumed_once(runtime_config):
    persistence.write_status_report(runtime_config, "all good")

    assert persistence.wait_for_status_report(runtime_config, timeout=1) == "all good"
    assert not persistence.status_report_path(runtime_config).exists()


def test_status_report_wait_times_out(runtime_config):
    started = time.monotonic()
    assert persistence.wait_for_status_report(runtime_config, timeout=0.3) is None
    assert time.monotonic() - started >= 0.3


def test_control_files_are_named_after_the_prefix(runtime_config):
    prefix = runtime_config.prefix
    assert persistence.pid_file_path(runtime_config).name == f"{prefix}.pid"
    assert persistence.shutdown_signal_path(runtime_config).name == f"{prefix}.shutdown.signal"
    assert persistence.status_report_path(runtime_config).name == f"{prefix}.status"
    assert persistence.log_file_path(runtime_config).name == f"{prefix}.log"
