"""Explicit ordering handles passed to the executor.

A :class:`Prerequisite` is a named completion signal. Whoever owns the
prerequisite marks it succeeded or failed; commands that list it wait for
the signal before they run and refuse to run when it failed.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Optional

from .errors import RightsError
from .state_reader import user_exists

logger = logging.getLogger(__name__)


class PrerequisiteState(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Prerequisite:
    """Completion signal of another unit of work."""

    def __init__(self, name: str):
        self.name = name
        self._event = threading.Event()
        self._state = PrerequisiteState.PENDING
        self._reason: Optional[str] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Prerequisite({self.name!r}, {self._state.value})"

    @classmethod
    def satisfied(cls, name: str) -> "Prerequisite":
        prereq = cls(name)
        prereq.mark_succeeded()
        return prereq

    @property
    def state(self) -> PrerequisiteState:
        return self._state

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def _finish(self, state: PrerequisiteState, reason: Optional[str]) -> None:
        with self._lock:
            if self._event.is_set():
                logger.warning("Prerequisite %s already completed", self.name)
                return
            self._state = state
            self._reason = reason
            self._event.set()

    def mark_succeeded(self) -> None:
        self._finish(PrerequisiteState.SUCCEEDED, None)

    def mark_failed(self, reason: str = "failed") -> None:
        self._finish(PrerequisiteState.FAILED, reason)

    def wait(self, timeout: float | None = None) -> PrerequisiteState:
        """Block until completed or *timeout* seconds passed; return the state."""
        self._event.wait(timeout)
        return self._state

    def complete(self, result) -> None:
        """Complete from the result of a finished task.

        A failed :class:`ReconcileOutcome` or ``False`` fails the
        prerequisite; any other result succeeds it.
        """
        if getattr(result, "failed", False):
            self.mark_failed(getattr(result, "detail", None) or "failed")
        elif result is False:
            self.mark_failed("failed")
        else:
            self.mark_succeeded()

    def fail(self, exc: BaseException) -> None:
        self.mark_failed(str(exc))


def user_account_exists(executor, templater, intent, timeout: float | None = None) -> Prerequisite:
    """Return a prerequisite completed by probing ``user@host`` on the server.

    This stands for the "user account exists" resource a grant depends on.
    """

    prereq = Prerequisite(f"user:{intent.user}@{intent.host}")
    try:
        found = user_exists(executor, templater.render_user_probe(intent), timeout=timeout)
    except RightsError as e:
        logger.error("User probe for %s failed: %s", prereq.name, e)
        prereq.mark_failed(str(e))
        return prereq
    if found:
        prereq.mark_succeeded()
    else:
        prereq.mark_failed("user account does not exist")
    return prereq
