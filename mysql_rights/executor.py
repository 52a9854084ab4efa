from __future__ import annotations

"""Run rendered commands through ``/bin/sh`` under a restricted ``PATH``."""

import logging
import os
import shlex
import shutil
import subprocess
import threading
import time
from concurrent.futures import Future
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

from .data_models import ExecResult, RenderedCommand
from .errors import ExecutionTimeout, PathNotAllowed, PrerequisiteFailed
from .prerequisites import Prerequisite, PrerequisiteState
from .task_manager import get_task_manager

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_PATHS = ("/bin", "/usr/bin", "/usr/local/bin")
SHELL = "/bin/sh"
SHELL_OPERATORS = {"|", "||", "&&", ";", "&", "(", ")", "|&"}

Runner = Callable[[Sequence[str], Mapping[str, str], Optional[float]], Tuple[int, str]]


def command_programs(text: str) -> List[str]:
    """Return the programs started by the shell command line *text*.

    Only the first word of each pipeline stage is considered; leading
    ``NAME=value`` assignments are skipped.
    """

    lexer = shlex.shlex(text, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    programs: List[str] = []
    expect_program = True
    for token in lexer:
        if token in SHELL_OPERATORS:
            expect_program = True
            continue
        if expect_program:
            name, sep, _ = token.partition("=")
            if sep and name.isidentifier():
                continue
            programs.append(token)
            expect_program = False
    return programs


def _drain(proc: subprocess.Popen, started: float) -> None:
    proc.communicate()
    logger.warning(
        "Timed out command (pid %s) finished after %.1fs with exit code %s",
        proc.pid, time.monotonic() - started, proc.returncode,
    )


def subprocess_runner(
    argv: Sequence[str], env: Mapping[str, str], timeout: Optional[float]
) -> Tuple[int, str]:
    """Default runner: spawn *argv*, merge stderr into stdout.

    On timeout the process is not killed: it keeps running to completion in
    the background and :class:`ExecutionTimeout` is raised.
    """

    started = time.monotonic()
    proc = subprocess.Popen(
        list(argv),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        env=dict(env),
        text=True,
    )
    try:
        output, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired as e:
        threading.Thread(target=_drain, args=(proc, started), daemon=True).start()
        raise ExecutionTimeout(f"Command did not finish within {timeout}s") from e
    return proc.returncode, output or ""


class Executor:
    """Execute shell commands after their prerequisites completed.

    Parameters
    ----------
    allowed_paths:
        Directories programs may be resolved from. Also used as ``PATH``.
    timeout:
        Default seconds to wait for a command, ``None`` waits forever.
    prerequisite_timeout:
        Seconds to wait for each pending prerequisite before giving up.
    log_output:
        Log the combined output of every command.
    runner:
        Callable spawning the process, ``subprocess_runner`` by default.
    """

    def __init__(
        self,
        allowed_paths: Iterable[str] = DEFAULT_ALLOWED_PATHS,
        timeout: float | None = None,
        prerequisite_timeout: float | None = None,
        log_output: bool = True,
        runner: Runner | None = None,
        shell: str = SHELL,
    ):
        self.allowed_paths = tuple(os.path.normpath(p) for p in allowed_paths)
        if not self.allowed_paths:
            raise ValueError("allowed_paths must not be empty")
        self.timeout = timeout
        self.prerequisite_timeout = prerequisite_timeout
        self.log_output = log_output
        self.runner = runner or subprocess_runner
        self.shell = shell

    # ------------------------------------------------------------------
    @property
    def search_path(self) -> str:
        return os.pathsep.join(self.allowed_paths)

    def resolve_program(self, program: str) -> str:
        """Return the absolute path of *program* inside the allow-list."""

        if os.sep in program:
            path = os.path.normpath(program)
            if not os.path.isabs(path) or os.path.dirname(path) not in self.allowed_paths:
                raise PathNotAllowed(f"{program} is outside {list(self.allowed_paths)}")
            if not (os.path.isfile(path) and os.access(path, os.X_OK)):
                raise PathNotAllowed(f"{program} is not an executable file")
            return path
        found = shutil.which(program, path=self.search_path)
        if not found:
            raise PathNotAllowed(
                f"{program} not found in {list(self.allowed_paths)}"
            )
        return found

    def check_prerequisites(self, prerequisites: Iterable[Prerequisite]) -> None:
        for prereq in prerequisites:
            state = prereq.wait(self.prerequisite_timeout)
            if state is PrerequisiteState.FAILED:
                raise PrerequisiteFailed(prereq.name, prereq.reason)
            if state is not PrerequisiteState.SUCCEEDED:
                raise PrerequisiteFailed(prereq.name, "did not complete")

    def _child_env(self, extra: Mapping[str, str]) -> dict:
        env = {"PATH": self.search_path, "LC_ALL": "C"}
        if "HOME" in os.environ:
            env["HOME"] = os.environ["HOME"]
        env.update(extra)
        return env

    # ------------------------------------------------------------------
    def execute(
        self,
        command: RenderedCommand | str,
        prerequisites: Iterable[Prerequisite] = (),
        timeout: float | None = None,
    ) -> ExecResult:
        """Run *command* and return its exit code and combined output.

        Raises :class:`PrerequisiteFailed` before anything is spawned when a
        prerequisite failed, :class:`PathNotAllowed` when a program resolves
        outside the allow-list and :class:`ExecutionTimeout` when the command
        outlives the timeout.
        """

        if isinstance(command, str):
            command = RenderedCommand(text=command, programs=tuple(command_programs(command)))

        self.check_prerequisites(prerequisites)

        shell = self.resolve_program(self.shell)
        for program in command.programs:
            self.resolve_program(program)

        timeout = timeout if timeout is not None else self.timeout
        logger.info("Executing: %s", command.redacted())
        started = time.monotonic()
        try:
            exit_code, output = self.runner(
                [shell, "-c", command.text], self._child_env(command.env), timeout
            )
        except ExecutionTimeout:
            logger.error("Timed out after %ss: %s", timeout, command.redacted())
            raise
        elapsed = time.monotonic() - started

        if self.log_output and output.strip():
            logger.info("Output (exit %s): %s", exit_code, command.redact(output.rstrip()))
        else:
            logger.debug("Exit code %s after %.2fs", exit_code, elapsed)
        return ExecResult(exit_code=exit_code, output=output, elapsed=elapsed)

    def submit(
        self,
        command: RenderedCommand | str,
        prerequisites: Iterable[Prerequisite] = (),
        timeout: float | None = None,
        task_manager=None,
    ) -> Future:
        """Asynchronous form of :meth:`execute`."""

        manager = task_manager or get_task_manager()
        return manager.run_async(self.execute, None, None, None, command, prerequisites, timeout)
