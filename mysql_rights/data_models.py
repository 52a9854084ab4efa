"""Typed records passed between the templater, prober, executor and reconciler."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional, Tuple

from .errors import (
    ApplyError,
    ExecutionTimeout,
    InvalidIntent,
    PathNotAllowed,
    PrerequisiteFailed,
    ProbeError,
    RightsError,
)

# Privileges accepted at database level (``GRANT ... ON db.*``). USAGE is
# left out: a database-level USAGE grant never appears in SHOW GRANTS.
PRIVILEGE_WHITELIST = {
    "ALL PRIVILEGES",
    "ALTER",
    "ALTER ROUTINE",
    "CREATE",
    "CREATE ROUTINE",
    "CREATE TEMPORARY TABLES",
    "CREATE VIEW",
    "DELETE",
    "DROP",
    "EVENT",
    "EXECUTE",
    "INDEX",
    "INSERT",
    "LOCK TABLES",
    "REFERENCES",
    "SELECT",
    "SHOW VIEW",
    "TRIGGER",
    "UPDATE",
}

PRIVILEGE_ALIASES = {
    "ALL": "ALL PRIVILEGES",
}

ENSURE_VALUES = ("present", "absent")

MAX_DATABASE_NAME = 64


def normalize_privileges(privileges: Iterable[str] | str) -> frozenset:
    """Return upper-cased privilege names, mapping ``all`` to ``ALL PRIVILEGES``.

    A comma separated string is accepted as well as any iterable.
    """

    if isinstance(privileges, str):
        privileges = privileges.split(",")
    result = set()
    for priv in privileges:
        name = " ".join(str(priv).split()).upper()
        if not name:
            continue
        name = PRIVILEGE_ALIASES.get(name, name)
        if name not in PRIVILEGE_WHITELIST:
            raise InvalidIntent(f"Unsupported privilege: {priv!r}")
        result.add(name)
    if not result:
        raise InvalidIntent("At least one privilege is required")
    if "ALL PRIVILEGES" in result and len(result) > 1:
        raise InvalidIntent("'all' cannot be combined with other privileges")
    return frozenset(result)


def _require_text(name: str, value) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidIntent(f"'{name}' must be a non-empty string")
    if "\x00" in value:
        raise InvalidIntent(f"'{name}' must not contain NUL characters")


@dataclass(frozen=True)
class GrantIntent:
    """Desired privileges of ``user@host`` on ``database``."""

    database: str
    user: str
    password: str = field(repr=False)
    host: str = "localhost"
    privileges: frozenset = frozenset({"ALL PRIVILEGES"})
    grant_option: bool = False
    ensure: str = "present"
    title: Optional[str] = None
    db_host: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        _require_text("database", self.database)
        _require_text("user", self.user)
        _require_text("host", self.host)
        if len(self.database) > MAX_DATABASE_NAME:
            raise InvalidIntent(
                f"'database' longer than {MAX_DATABASE_NAME} characters"
            )
        if self.password is None:
            object.__setattr__(self, "password", "")
        elif not isinstance(self.password, str) or "\x00" in self.password:
            raise InvalidIntent("'password' must be a string without NUL characters")
        if self.ensure not in ENSURE_VALUES:
            raise InvalidIntent(f"'ensure' must be one of {ENSURE_VALUES}")
        object.__setattr__(self, "privileges", normalize_privileges(self.privileges))
        object.__setattr__(self, "grant_option", bool(self.grant_option))
        if not self.title:
            object.__setattr__(
                self, "title", f"{self.user}@{self.host}/{self.database}"
            )

    @property
    def key(self) -> Tuple[str, str, str]:
        """Reconciliation key. Unique within one batch."""
        return (self.database, self.user, self.host)


@dataclass(frozen=True)
class ClientOptions:
    """How the privileged ``mysql``/``mysqladmin`` clients are invoked."""

    mysql_bin: str = "mysql"
    mysqladmin_bin: str = "mysqladmin"
    db_host: Optional[str] = "localhost"
    db_user: Optional[str] = None
    db_password: Optional[str] = field(default=None, repr=False)
    defaults_file: Optional[str] = None
    identified_by: bool = True

    @classmethod
    def from_config(cls, cfg: Mapping[str, object], db_password: str | None = None):
        return cls(
            mysql_bin=cfg.get("mysql_bin") or "mysql",
            mysqladmin_bin=cfg.get("mysqladmin_bin") or "mysqladmin",
            db_host=cfg.get("db_host"),
            db_user=cfg.get("db_user"),
            db_password=db_password,
            defaults_file=cfg.get("defaults_file"),
            identified_by=bool(cfg.get("identified_by", True)),
        )


REDACTED = "********"


@dataclass(frozen=True)
class RenderedCommand:
    """Shell text plus what the executor needs to check and run it."""

    text: str
    programs: Tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict, repr=False)
    secrets: Tuple[str, ...] = field(default=(), repr=False)

    def redact(self, text: str) -> str:
        """Mask this command's secrets in *text* (the command itself or its output)."""
        for secret in sorted(self.secrets, key=len, reverse=True):
            if secret:
                text = text.replace(secret, REDACTED)
        return text

    def redacted(self) -> str:
        return self.redact(self.text)

    def __str__(self) -> str:
        return self.redacted()

    def __repr__(self) -> str:
        return f"RenderedCommand({self.redacted()!r}, programs={self.programs!r})"


@dataclass(frozen=True)
class ExecResult:
    exit_code: int
    output: str
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class ProbeResult:
    output: str
    exit_code: int
    already_granted: bool


class OutcomeStatus(Enum):
    UNCHANGED = "unchanged"
    APPLIED = "applied"
    FAILED = "failed"
    # dry-run only: the apply command would run
    PLANNED = "planned"


class FailureReason(Enum):
    INVALID_INTENT = "invalid_intent"
    PROBE_ERROR = "probe_error"
    APPLY_ERROR = "apply_error"
    PREREQUISITE_FAILED = "prerequisite_failed"
    TIMEOUT = "timeout"
    PATH_NOT_ALLOWED = "path_not_allowed"


@dataclass(frozen=True)
class ReconcileOutcome:
    """Result of one reconciliation pass over a :class:`GrantIntent`."""

    title: str
    status: OutcomeStatus
    reason: Optional[FailureReason] = None
    detail: Optional[str] = None
    output: str = ""

    @property
    def changed(self) -> bool:
        return self.status is OutcomeStatus.APPLIED

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    @classmethod
    def unchanged(cls, title: str, output: str = "") -> "ReconcileOutcome":
        return cls(title=title, status=OutcomeStatus.UNCHANGED, output=output)

    @classmethod
    def applied(cls, title: str, output: str = "") -> "ReconcileOutcome":
        return cls(title=title, status=OutcomeStatus.APPLIED, output=output)

    @classmethod
    def failure(
        cls, title: str, reason: FailureReason, detail: str, output: str = ""
    ) -> "ReconcileOutcome":
        return cls(
            title=title,
            status=OutcomeStatus.FAILED,
            reason=reason,
            detail=detail,
            output=output,
        )

    def as_dict(self) -> dict:
        return {
            "title": self.title,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
        }

    def raise_for_status(self) -> "ReconcileOutcome":
        """Raise the error matching a failed outcome, return self otherwise."""
        if not self.failed:
            return self
        if self.reason is FailureReason.PREREQUISITE_FAILED:
            raise PrerequisiteFailed(self.title, self.detail)
        error = _REASON_ERRORS.get(self.reason, RightsError)
        raise error(f"{self.title}: {self.detail}")


_REASON_ERRORS = {
    FailureReason.INVALID_INTENT: InvalidIntent,
    FailureReason.PROBE_ERROR: ProbeError,
    FailureReason.APPLY_ERROR: ApplyError,
    FailureReason.TIMEOUT: ExecutionTimeout,
    FailureReason.PATH_NOT_ALLOWED: PathNotAllowed,
}
