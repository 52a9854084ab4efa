import logging
import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from conftest import FakeRunner
from mysql_rights.data_models import FailureReason, GrantIntent, ReconcileOutcome
from mysql_rights.prerequisites import (
    Prerequisite,
    PrerequisiteState,
    user_account_exists,
)
from mysql_rights.templater import CommandTemplater


def test_initial_state_and_wait_timeout():
    prereq = Prerequisite("x")
    assert prereq.state is PrerequisiteState.PENDING
    assert prereq.wait(0.01) is PrerequisiteState.PENDING


def test_satisfied_and_failed():
    assert Prerequisite.satisfied("ok").wait(0) is PrerequisiteState.SUCCEEDED

    prereq = Prerequisite("bad")
    prereq.mark_failed("boom")
    assert prereq.wait() is PrerequisiteState.FAILED
    assert prereq.reason == "boom"


def test_second_completion_is_ignored(caplog):
    prereq = Prerequisite("once")
    prereq.mark_failed("first")
    with caplog.at_level(logging.WARNING):
        prereq.mark_succeeded()
    assert prereq.state is PrerequisiteState.FAILED
    assert "already completed" in caplog.text


def test_complete_from_task_results():
    p_ok, p_failed, p_raised, p_false = (Prerequisite(n) for n in ("ok", "failed", "raised", "false"))

    p_ok.complete(ReconcileOutcome.applied("ok"))
    p_failed.complete(ReconcileOutcome.failure("failed", FailureReason.APPLY_ERROR, "exit 1"))
    p_raised.fail(RuntimeError("crashed"))
    p_false.complete(False)

    assert p_ok.state is PrerequisiteState.SUCCEEDED
    assert p_failed.state is PrerequisiteState.FAILED
    assert p_failed.reason == "exit 1"
    assert p_raised.reason == "crashed"
    assert p_false.state is PrerequisiteState.FAILED


def test_user_account_exists(make_executor):
    intent = GrantIntent(database="app", user="app", password="pw")
    templater = CommandTemplater()

    found = user_account_exists(make_executor(FakeRunner(responses=[(0, "1\n")])), templater, intent)
    assert found.state is PrerequisiteState.SUCCEEDED
    assert found.name == "user:app@localhost"

    missing = user_account_exists(make_executor(FakeRunner(responses=[(0, "0\n")])), templater, intent)
    assert missing.state is PrerequisiteState.FAILED
    assert missing.reason == "user account does not exist"


def test_user_account_probe_error_fails_prerequisite(make_executor, caplog):
    intent = GrantIntent(database="app", user="app", password="pw")
    runner = FakeRunner(responses=[(1, "ERROR 2002 (HY000): Can't connect\n")])
    with caplog.at_level(logging.ERROR):
        prereq = user_account_exists(make_executor(runner), CommandTemplater(), intent)
    assert prereq.state is PrerequisiteState.FAILED
    assert "Can't connect" in prereq.reason
    assert "User probe for user:app@localhost failed" in caplog.text
