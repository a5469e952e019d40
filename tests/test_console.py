import pytest

from easytask import main as main_module
from easytask.errors import NotRunning
from easytask.local.console import execute_command


class FakeTask:
    def __init__(self, running=True):
        self.running = running
        self.calls = []

    def start(self):
        self.calls.append("start")

    def status(self):
        if not self.running:
            raise NotRunning("No running supervisor found for prefix 'x'.")
        self.calls.append("status")

    def stop(self, force=False):
        if not self.running:
            raise NotRunning("No running supervisor found for prefix 'x'.")
        self.calls.append(("stop", force))


@pytest.mark.parametrize("args, force", [
    ([], False),
    (["--force"], True),
    (["-f"], True),
])
def test_stop_command(args, force):
    task = FakeTask()
    assert execute_command(task, "stop", args) == 0
    assert task.calls == [("stop", force)]


def test_status_and_start_commands():
    task = FakeTask()
    assert execute_command(task, "status", []) == 0
    assert execute_command(task, "start", []) == 0
    assert task.calls == ["status", "start"]


def test_not_running_is_reported(capsys):
    assert execute_command(FakeTask(running=False), "status", []) == 1
    assert "ERROR: No running supervisor" in capsys.readouterr().out


def test_unknown_command(capsys):
    task = FakeTask()
    assert execute_command(task, "restart", []) == 2
    assert "Unknown command: 'restart'" in capsys.readouterr().out
    assert task.calls == []


def test_help_lists_commands(capsys):
    assert execute_command(FakeTask(), "help", []) == 0
    out = capsys.readouterr().out
    assert "status" in out and "stop" in out


def test_task_run_defaults_to_help(task, capsys):
    assert task.run([]) == 0
    assert "stop" in capsys.readouterr().out


@pytest.fixture()
def quiet_logging(monkeypatch):
    monkeypatch.setattr(main_module, "setup_logging", lambda *args, **kwargs: None)


def test_main_status_without_supervisor(tmp_path, quiet_logging, capsys):
    code = main_module.main(["status", "--prefix", "nothing-here", "--runtime-dir", str(tmp_path)])

    assert code == 1
    assert "nothing-here" in capsys.readouterr().out


def test_main_stop_accepts_equals_options(tmp_path, quiet_logging, capsys):
    code = main_module.main(["stop", "--force", "--prefix=idle", f"--runtime-dir={tmp_path}"])

    assert code == 1
    assert "ERROR" in capsys.readouterr().out


def test_main_refuses_start(tmp_path, quiet_logging):
    assert main_module.main(["start", "--runtime-dir", str(tmp_path)]) == 2
