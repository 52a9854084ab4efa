"""Exceptions raised while rendering, probing and applying grants."""


class RightsError(Exception):
    """Base class for every error raised by :mod:`mysql_rights`."""


class InvalidIntent(RightsError, ValueError):
    """Malformed desired state. Detected locally, never reaches the executor."""


class ProbeError(RightsError):
    """The probe command failed in a way that does not mean "not granted"."""

    def __init__(self, message: str, exit_code: int | None = None, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class ApplyError(RightsError):
    def __init__(self, message: str, exit_code: int | None = None, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class PrerequisiteFailed(RightsError):
    """A prerequisite failed or did not complete; nothing was executed."""

    def __init__(self, prerequisite: str, reason: str | None = None):
        msg = f"Prerequisite '{prerequisite}' not satisfied"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.prerequisite = prerequisite
        self.reason = reason


class ExecutionTimeout(RightsError, TimeoutError):
    """The command did not finish in time. Its effect is unknown."""


class PathNotAllowed(RightsError, PermissionError):
    """A program resolved outside the allow-listed directories."""
