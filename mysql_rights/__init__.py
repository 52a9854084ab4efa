"""Idempotent reconciliation of MySQL database grants."""

from .data_models import (
    ClientOptions,
    ExecResult,
    FailureReason,
    GrantIntent,
    OutcomeStatus,
    ProbeResult,
    ReconcileOutcome,
    RenderedCommand,
)
from .errors import (
    ApplyError,
    ExecutionTimeout,
    InvalidIntent,
    PathNotAllowed,
    PrerequisiteFailed,
    ProbeError,
    RightsError,
)
from .executor import Executor
from .prerequisites import Prerequisite, PrerequisiteState
from .reconciler import Reconciler
from .templater import CommandTemplater

__all__ = [
    "ApplyError",
    "ClientOptions",
    "CommandTemplater",
    "ExecResult",
    "ExecutionTimeout",
    "Executor",
    "FailureReason",
    "GrantIntent",
    "InvalidIntent",
    "OutcomeStatus",
    "PathNotAllowed",
    "Prerequisite",
    "PrerequisiteFailed",
    "PrerequisiteState",
    "ProbeError",
    "ProbeResult",
    "Reconciler",
    "ReconcileOutcome",
    "RenderedCommand",
    "RightsError",
]
