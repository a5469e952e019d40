"""Shared test fixtures."""

import uuid
import dataclasses
from pathlib import Path

import pytest

from easytask import Task
from easytask.local.runtime import RuntimeConfig, probe_runtime


@pytest.fixture()
def prefix() -> str:
    return f"test-{uuid.uuid4().hex[:8]}"


@pytest.fixture()
def runtime_config(tmp_path: Path, prefix: str) -> RuntimeConfig:
    """A RuntimeConfig whose control files live in the test's tmp dir."""
    return dataclasses.replace(
        probe_runtime(prefix=prefix, runtime_dir=tmp_path),
        grace_timeout=5,
    )


@pytest.fixture()
def task(tmp_path: Path, prefix: str) -> Task:
    return Task().set_prefix(prefix).set_runtime_dir(tmp_path).set_grace_timeout(5)
