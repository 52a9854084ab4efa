import os
import pathlib
import shutil
import sys
import threading
import time

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from mysql_rights.executor import Executor
from mysql_rights.logger import secret_filter

FAKE_PROGRAMS = ["sh", "mysql", "mysqladmin", "grep"]

# Integration server parameters come from the environment
MYSQL_ENV = ["MYSQL_TEST_HOST", "MYSQL_TEST_USER"]


class FakeRunner:
    """Record-only process runner.

    Returns queued ``(exit_code, output)`` responses in order, or asks
    ``handler(command_text)`` when one is given.
    """

    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, argv, env, timeout):
        with self._lock:
            self.calls.append({"argv": list(argv), "env": dict(env), "timeout": timeout})
        if self.handler:
            return self.handler(argv[-1])
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return 0, ""

    @property
    def commands(self):
        return [c["argv"][-1] for c in self.calls]


class FakeServer:
    """Grant state of one account, driven by the rendered commands."""

    def __init__(self, granted=False, probe_delay=0.0, grant_line=None):
        self.granted = granted
        self.probe_delay = probe_delay
        self.grant_line = grant_line or "GRANT ALL PRIVILEGES ON `app`.* TO 'app'@'localhost'"
        self.applies = []
        self.lock = threading.Lock()

    def __call__(self, text):
        if "show grants for" in text:
            with self.lock:
                granted = self.granted
            if self.probe_delay:
                time.sleep(self.probe_delay)
            return (0, self.grant_line + "\n") if granted else (1, "")
        with self.lock:
            self.applies.append(text)
            self.granted = "REVOKE" not in text
        return 0, ""


@pytest.fixture()
def fake_bin(tmp_path):
    """Directory with executable stand-ins for sh, mysql, mysqladmin and grep."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for name in FAKE_PROGRAMS:
        prog = bin_dir / name
        prog.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
        prog.chmod(0o755)
    return bin_dir


@pytest.fixture()
def make_executor(fake_bin):
    def _make(runner, **kwargs):
        return Executor(
            allowed_paths=[str(fake_bin)],
            shell=str(fake_bin / "sh"),
            runner=runner,
            **kwargs,
        )

    return _make


@pytest.fixture(autouse=True)
def reset_secret_filter():
    yield
    secret_filter.clear()


@pytest.fixture(scope="session")
def mysql_server():
    missing = [k for k in MYSQL_ENV if not os.environ.get(k)]
    if missing or not shutil.which("mysql"):
        pytest.skip("Set MYSQL_TEST_HOST/MYSQL_TEST_USER and install the mysql client for integration tests")
    return {
        "db_host": os.environ["MYSQL_TEST_HOST"],
        "db_user": os.environ["MYSQL_TEST_USER"],
        "db_password": os.environ.get("MYSQL_TEST_PASSWORD"),
    }
