"""本地命令执行端口。Command execution port for host-level operations.

Every component that shells out receives a :class:`CommandExecutor`. The
production adapter wraps :func:`subprocess.run`; tests inject a double that
simulates tool presence and failures without touching the host.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence, Tuple

from dvpn.errors import CommandTimeout, ToolInvocationError
from dvpn.logging_utils import get_logger

LOGGER = get_logger(__name__)

_SUBPROCESS_TEXT_KWARGS = {"text": True, "encoding": "utf-8", "errors": "replace"}


@dataclass
class CommandResult:
    """一次命令执行的结果。Result of one command execution."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    command: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def describe(self) -> str:
        details = self.stderr.strip() or self.stdout.strip() or f"exit code {self.exit_code}"
        return details[-600:]


class CommandExecutor(Protocol):
    """Capability to run host commands and look up tools."""

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        ...

    def which(self, tool: str) -> Optional[str]:
        ...


class SubprocessExecutor:
    """Run commands locally through :mod:`subprocess`.

    Non-zero exit codes are returned, not raised. A command that cannot be
    started raises :class:`ToolInvocationError`; one that exceeds its timeout
    raises :class:`CommandTimeout`.
    """

    def __init__(self, default_timeout: Optional[float] = None):
        self.default_timeout = default_timeout

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        argv = [command, *args]
        effective_timeout = timeout if timeout is not None else self.default_timeout
        LOGGER.debug("$ %s", " ".join(argv), extra={"timeout": effective_timeout})
        try:
            completed = subprocess.run(
                argv,
                input=input_text,
                capture_output=True,
                **_SUBPROCESS_TEXT_KWARGS,
                timeout=effective_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeout(
                f"Command timed out after {effective_timeout}s: {command}",
                command=argv,
            ) from exc
        except OSError as exc:
            raise ToolInvocationError(
                f"Failed to start {command}: {exc}",
                command=argv,
            ) from exc

        return CommandResult(
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            command=tuple(argv),
        )

    def which(self, tool: str) -> Optional[str]:
        return shutil.which(tool)


def privileged(command: str, args: Sequence[str], use_sudo: bool) -> Tuple[str, list]:
    """Return ``(command, args)`` prefixed with ``sudo`` when requested."""

    if use_sudo:
        return "sudo", [command, *args]
    return command, list(args)
