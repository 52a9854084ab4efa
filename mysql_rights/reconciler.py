from __future__ import annotations

"""Converge MySQL grants towards the declared intents."""

import logging
import threading
from collections import Counter
from contextlib import contextmanager
from concurrent.futures import Future
from typing import Callable, Dict, Hashable, Iterable, List, Mapping, Sequence, Tuple

from . import state_reader
from .data_models import FailureReason, GrantIntent, OutcomeStatus, ReconcileOutcome
from .errors import (
    ApplyError,
    ExecutionTimeout,
    InvalidIntent,
    PathNotAllowed,
    PrerequisiteFailed,
    ProbeError,
    RightsError,
)
from .logger import get_logger
from .prerequisites import Prerequisite
from .task_manager import TaskManager, get_task_manager
from .templater import CommandTemplater

logger = logging.getLogger(__name__)
outcome_log = get_logger("mysql_rights.outcomes")

ERROR_REASONS: List[Tuple[type, FailureReason]] = [
    (InvalidIntent, FailureReason.INVALID_INTENT),
    (PrerequisiteFailed, FailureReason.PREREQUISITE_FAILED),
    (PathNotAllowed, FailureReason.PATH_NOT_ALLOWED),
    (ExecutionTimeout, FailureReason.TIMEOUT),
    (ProbeError, FailureReason.PROBE_ERROR),
    (ApplyError, FailureReason.APPLY_ERROR),
]


def reason_for(exc: RightsError, default: FailureReason) -> FailureReason:
    for exc_type, reason in ERROR_REASONS:
        if isinstance(exc, exc_type):
            return reason
    return default


def check_unique_keys(intents: Iterable[GrantIntent]) -> None:
    """Raise :class:`InvalidIntent` when two intents share (database, user, host)."""

    counts = Counter(intent.key for intent in intents)
    dupes = sorted(key for key, count in counts.items() if count > 1)
    if dupes:
        listed = ", ".join(f"{u}@{h}/{d}" for d, u, h in dupes)
        raise InvalidIntent(f"Duplicate rights in batch: {listed}")


class KeyedLocks:
    """One lock per key, dropped when nobody holds or waits for it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class Reconciler:
    """Check-then-act reconciliation of :class:`GrantIntent` objects.

    For each intent the probe command is run first; the apply command runs
    at most once, and only when the probe shows the server diverges from the
    intent. Probe and apply of the same ``(database, user, host)`` key run
    under one lock, so concurrent callers cannot both apply.
    """

    def __init__(
        self,
        executor,
        templater: CommandTemplater | None = None,
        task_manager: TaskManager | None = None,
    ):
        self.executor = executor
        self.templater = templater or CommandTemplater()
        self.task_manager = task_manager
        self.locks = KeyedLocks()

    # ------------------------------------------------------------------
    def _failure(self, intent: GrantIntent, exc: RightsError, default: FailureReason,
                 detail: str | None = None) -> ReconcileOutcome:
        return ReconcileOutcome.failure(
            intent.title,
            reason_for(exc, default),
            detail or str(exc),
            output=getattr(exc, "output", ""),
        )

    def _report(self, intent: GrantIntent, outcome: ReconcileOutcome) -> ReconcileOutcome:
        fields = dict(
            outcome.as_dict(),
            database=intent.database,
            user=intent.user,
            host=intent.host,
            ensure=intent.ensure,
        )
        if outcome.failed:
            outcome_log.error("reconcile", **fields)
        else:
            outcome_log.info("reconcile", **fields)
        return outcome

    def _satisfied(self, intent: GrantIntent, prerequisites: Sequence[Prerequisite]):
        """Run the probe; return (satisfied, output) or a failed outcome."""

        try:
            command = self.templater.render_probe(intent)
            probed = state_reader.probe(self.executor, command, prerequisites)
        except ExecutionTimeout as e:
            return self._failure(
                intent, e, FailureReason.TIMEOUT,
                f"probe timed out, grant state unknown: {e}",
            )
        except RightsError as e:
            return self._failure(intent, e, FailureReason.PROBE_ERROR)
        if intent.ensure == "absent":
            return not probed.already_granted, probed.output
        return probed.already_granted, probed.output

    # ------------------------------------------------------------------
    def reconcile(
        self, intent: GrantIntent, prerequisites: Sequence[Prerequisite] = ()
    ) -> ReconcileOutcome:
        """Bring the server in line with *intent*.

        Returns ``UNCHANGED`` when the probe shows nothing to do, ``APPLIED``
        when the apply command succeeded and ``FAILED`` with a reason
        otherwise. A timed out apply is ``FAILED(TIMEOUT)``: the grant may or
        may not be in place.
        """

        with self.locks.hold(intent.key):
            logger.debug("Reconciling %s", intent.title)
            probed = self._satisfied(intent, prerequisites)
            if isinstance(probed, ReconcileOutcome):
                return self._report(intent, probed)
            satisfied, probe_output = probed
            if satisfied:
                return self._report(intent, ReconcileOutcome.unchanged(intent.title, probe_output))

            try:
                command = self.templater.render_apply(intent)
                result = self.executor.execute(command)
            except ExecutionTimeout as e:
                return self._report(intent, self._failure(
                    intent, e, FailureReason.TIMEOUT,
                    f"apply timed out, grant state unknown: {e}",
                ))
            except RightsError as e:
                return self._report(intent, self._failure(intent, e, FailureReason.APPLY_ERROR))

            output = command.redact(result.output)
            if result.exit_code != 0:
                error = ApplyError(
                    f"apply exited with code {result.exit_code}: {output.strip()}",
                    exit_code=result.exit_code,
                    output=output,
                )
                return self._report(intent, self._failure(intent, error, FailureReason.APPLY_ERROR))
            return self._report(intent, ReconcileOutcome.applied(intent.title, output))

    def plan(
        self, intent: GrantIntent, prerequisites: Sequence[Prerequisite] = ()
    ) -> ReconcileOutcome:
        """Dry run: probe only, ``PLANNED`` when :meth:`reconcile` would apply."""

        with self.locks.hold(intent.key):
            probed = self._satisfied(intent, prerequisites)
        if isinstance(probed, ReconcileOutcome):
            return probed
        satisfied, output = probed
        if satisfied:
            return ReconcileOutcome.unchanged(intent.title, output)
        return ReconcileOutcome(
            title=intent.title,
            status=OutcomeStatus.PLANNED,
            detail=self.templater.render_apply(intent).redacted(),
            output=output,
        )

    # ------------------------------------------------------------------
    def _tasks(self) -> TaskManager:
        return self.task_manager or get_task_manager()

    def submit(
        self,
        intent: GrantIntent,
        prerequisites: Sequence[Prerequisite] = (),
        dry_run: bool = False,
        on_success: Callable | None = None,
        on_error: Callable | None = None,
    ) -> Future:
        """Reconcile *intent* on the task manager; the future holds the outcome.

        ``on_success`` receives the outcome and ``on_error`` an unexpected
        exception, both from the worker that ran the reconcile.
        """

        task = self.plan if dry_run else self.reconcile
        return self._tasks().run_async(
            task, on_success, on_error, None, intent, tuple(prerequisites)
        )

    def reconcile_all(
        self,
        intents: Sequence[GrantIntent],
        prerequisites: Mapping[str, Iterable[Prerequisite]] | None = None,
        requires: Mapping[str, Iterable[str]] | None = None,
        dry_run: bool = False,
    ) -> List[ReconcileOutcome]:
        """Reconcile a batch in parallel and return outcomes in input order.

        ``prerequisites`` maps an intent title to external prerequisites.
        ``requires`` maps a title to titles listed *earlier* in the batch; the
        intent then waits for those to finish without failing.
        """

        intents = list(intents)
        check_unique_keys(intents)
        prerequisites = prerequisites or {}
        requires = requires or {}

        seen: set = set()
        for intent in intents:
            if intent.title in seen:
                raise InvalidIntent(f"Duplicate title in batch: {intent.title}")
            for title in requires.get(intent.title, ()):
                if title not in seen:
                    raise InvalidIntent(
                        f"'{intent.title}' requires '{title}', which is not listed before it"
                    )
            seen.add(intent.title)

        done: Dict[str, Prerequisite] = {}
        futures: List[Future] = []
        for intent in intents:
            waits = list(prerequisites.get(intent.title, ()))
            waits.extend(done[title] for title in requires.get(intent.title, ()))
            finished = done[intent.title] = Prerequisite(intent.title)
            futures.append(
                self.submit(
                    intent,
                    waits,
                    dry_run=dry_run,
                    on_success=finished.complete,
                    on_error=finished.fail,
                )
            )

        return [f.result() for f in futures]
