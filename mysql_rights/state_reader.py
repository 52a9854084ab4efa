from __future__ import annotations

"""Read the current grant state of the server through probe commands.

The probe commands are rendered by :mod:`mysql_rights.templater` and are
read-only. They end in ``grep`` so an empty output (and grep's exit code 1)
means the grant is missing. MySQL's own "no such grant" errors mean the same
thing; any other failure is a :class:`ProbeError`.
"""

import logging
import re
from typing import Iterable

from .data_models import ProbeResult, RenderedCommand
from .errors import ProbeError

logger = logging.getLogger(__name__)

# Messages printed by the mysql client when the account or grant is missing.
ABSENCE_PATTERNS = [
    re.compile(r"ERROR 1141 \(42000\)"),  # There is no such grant defined
    re.compile(r"There is no such grant defined", re.IGNORECASE),
    re.compile(r"ERROR 1403 \(42000\)"),  # no such grant on table
]


def is_absence_output(output: str) -> bool:
    text = output.strip()
    if not text:
        return True
    return any(pat.search(text) for pat in ABSENCE_PATTERNS)


def classify(exit_code: int, output: str) -> ProbeResult:
    """Turn the probe's exit code and output into a :class:`ProbeResult`."""

    if exit_code == 0:
        return ProbeResult(output=output, exit_code=exit_code, already_granted=bool(output.strip()))
    if is_absence_output(output):
        return ProbeResult(output=output, exit_code=exit_code, already_granted=False)
    raise ProbeError(
        f"Probe failed with exit code {exit_code}: {output.strip()}",
        exit_code=exit_code,
        output=output,
    )


def probe(executor, command: RenderedCommand, prerequisites: Iterable = (), timeout: float | None = None) -> ProbeResult:
    """Execute *command* and report whether the grant is already in place."""

    result = executor.execute(command, prerequisites, timeout=timeout)
    probed = classify(result.exit_code, result.output)
    logger.debug(
        "Probe exit=%s already_granted=%s", probed.exit_code, probed.already_granted
    )
    return probed


def user_exists(executor, command: RenderedCommand, timeout: float | None = None) -> bool:
    """Run the user-account query and parse its ``COUNT(*)`` output."""

    result = executor.execute(command, timeout=timeout)
    if result.exit_code != 0:
        raise ProbeError(
            f"User probe failed with exit code {result.exit_code}: {result.output.strip()}",
            exit_code=result.exit_code,
            output=result.output,
        )
    lines = [line.strip() for line in result.output.splitlines() if line.strip()]
    try:
        return int(lines[-1]) > 0
    except (IndexError, ValueError):
        raise ProbeError(
            f"Unexpected user probe output: {result.output.strip()!r}",
            exit_code=result.exit_code,
            output=result.output,
        )
