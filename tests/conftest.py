"""Shared fixtures for procscope tests."""

import subprocess
import sys

import pytest

from procscope.models import ProcessRecord, ProcessStatus


def build_record(pid: int = 1, **overrides) -> ProcessRecord:
    values = dict(
        pid=pid,
        parent_pid=None,
        name="init",
        cmd="/sbin/init",
        exe="/sbin/init",
        status=ProcessStatus.SLEEPING,
        cpu_percent=0.1,
        memory_bytes=10000,
        virtual_memory_bytes=20000,
        read_bytes=0,
        written_bytes=0,
        run_time_seconds=5,
    )
    values.update(overrides)
    return ProcessRecord(**values)


@pytest.fixture
def make_record():
    """Factory for ProcessRecord values with overridable fields."""
    return build_record


@pytest.fixture
def spawn_sleeper():
    """Start throwaway sleeping processes, cleaned up after the test."""
    started: list[subprocess.Popen] = []

    def spawn(duration: float = 60.0) -> subprocess.Popen:
        proc = subprocess.Popen([sys.executable, "-c", f"import time; time.sleep({duration})"])
        started.append(proc)
        return proc

    yield spawn

    for proc in started:
        if proc.poll() is None:
            proc.kill()
    for proc in started:
        try:
            proc.wait(timeout=5.0)
        except subprocess.TimeoutExpired:
            pass
