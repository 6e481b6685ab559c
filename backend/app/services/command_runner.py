"""
External command execution

Deploy and stream-probe code never spawns processes directly; it goes through
a ``CommandRunner`` so tests can substitute a scripted fake.
"""
import asyncio
import logging
import shlex
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

# Captured output kept in error messages and logs
STDERR_TAIL_CHARS = 2000


class CommandError(RuntimeError):
    """An external command exited non-zero, timed out or could not be started."""

    def __init__(self, command: str, exit_code: Optional[int], stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip()[-STDERR_TAIL_CHARS:] if stderr else ""
        message = f"{command} failed (exit {exit_code})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class CommandTimeoutError(CommandError):
    """The command was killed after exceeding its time budget."""

    def __init__(self, command: str, timeout: float):
        self.timeout = timeout
        super().__init__(command, None, f"timed out after {timeout}s")


@dataclass
class CommandResult:
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def check(self) -> "CommandResult":
        """Raise CommandError unless the command exited 0"""
        if self.exit_code != 0:
            raise CommandError(self.command, self.exit_code, self.stderr)
        return self


class CommandRunner(Protocol):
    """Runs external programs and captures their output."""

    async def run(
        self,
        program: str,
        args: Sequence[str],
        timeout: Optional[float] = None,
    ) -> CommandResult: ...

    async def run_shell(self, command: str, timeout: Optional[float] = None) -> CommandResult: ...


class SubprocessCommandRunner:
    """CommandRunner backed by asyncio subprocesses."""

    async def run(
        self,
        program: str,
        args: Sequence[str],
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Execute ``program`` with ``args`` (no shell involved).

        Raises:
            CommandError: If the program cannot be started
            CommandTimeoutError: If it runs longer than ``timeout`` seconds
        """
        try:
            process = await asyncio.create_subprocess_exec(
                program,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CommandError(program, None, str(e)) from e
        return await self._collect(process, program, timeout)

    async def run_shell(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """
        Execute a single command string through the platform shell.

        Callers must have validated ``command`` beforehand.
        """
        label = _command_name(command)
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CommandError(label, None, str(e)) from e
        return await self._collect(process, label, timeout)

    async def _collect(
        self,
        process: asyncio.subprocess.Process,
        label: str,
        timeout: Optional[float],
    ) -> CommandResult:
        start = time.monotonic()
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Command {label} timed out after {timeout}s, killing",
                extra={"event_type": "command_timeout", "command": label},
            )
            process.kill()
            await process.wait()
            raise CommandTimeoutError(label, timeout)

        result = CommandResult(
            command=label,
            exit_code=process.returncode,
            stdout=stdout.decode(errors="replace") if stdout else "",
            stderr=stderr.decode(errors="replace") if stderr else "",
        )
        logger.debug(
            f"Command {label} exited {result.exit_code}",
            extra={
                "event_type": "command_finished",
                "command": label,
                "exit_code": result.exit_code,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
            },
        )
        return result


def _command_name(command: str) -> str:
    """First word of a shell command, used as its label in errors and logs"""
    try:
        parts = shlex.split(command, posix=True)
    except ValueError:
        parts = command.split()
    return parts[0] if parts else command


def get_command_runner() -> CommandRunner:
    """FastAPI dependency providing the default runner"""
    return SubprocessCommandRunner()
