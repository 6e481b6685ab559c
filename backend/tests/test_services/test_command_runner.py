"""Unit tests for external command execution"""
import sys

import pytest

from app.services.command_runner import (
    CommandError,
    CommandResult,
    CommandTimeoutError,
    SubprocessCommandRunner,
    _command_name,
    get_command_runner,
)


class TestCommandResult:
    """Test exit code handling"""

    def test_ok(self):
        result = CommandResult(command="scp", exit_code=0)
        assert result.ok is True
        assert result.check() is result

    def test_check_raises_with_stderr_tail(self):
        result = CommandResult(command="scp", exit_code=1, stderr="lost connection\n")

        with pytest.raises(CommandError) as exc_info:
            result.check()

        assert exc_info.value.exit_code == 1
        assert str(exc_info.value) == "scp failed (exit 1): lost connection"

    def test_error_without_stderr(self):
        assert str(CommandError("docker", 125)) == "docker failed (exit 125)"

    def test_timeout_error_is_command_error(self):
        error = CommandTimeoutError("ssh", 120)

        assert isinstance(error, CommandError)
        assert error.exit_code is None
        assert error.timeout == 120
        assert "timed out after 120s" in str(error)


class TestCommandName:
    @pytest.mark.parametrize("command,expected", [
        ("systemctl restart mediamtx", "systemctl"),
        ("'/opt/my tools/restart.sh' now", "/opt/my tools/restart.sh"),
        ("unbalanced 'quote", "unbalanced"),
        ("", ""),
    ])
    def test_first_word(self, command, expected):
        assert _command_name(command) == expected


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell semantics")
class TestSubprocessCommandRunner:
    """Test real subprocess execution using the running interpreter"""

    @pytest.mark.asyncio
    async def test_captures_output_and_exit_code(self):
        runner = SubprocessCommandRunner()

        result = await runner.run(
            sys.executable,
            ["-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"],
            timeout=30,
        )

        assert result.exit_code == 3
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.ok is False

    @pytest.mark.asyncio
    async def test_missing_program(self):
        runner = SubprocessCommandRunner()

        with pytest.raises(CommandError) as exc_info:
            await runner.run("definitely-not-a-real-binary-7f3a", [])

        assert exc_info.value.exit_code is None
        assert exc_info.value.command == "definitely-not-a-real-binary-7f3a"

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        runner = SubprocessCommandRunner()

        with pytest.raises(CommandTimeoutError):
            await runner.run(sys.executable, ["-c", "import time; time.sleep(30)"], timeout=0.5)

    @pytest.mark.asyncio
    async def test_run_shell(self):
        runner = SubprocessCommandRunner()

        result = await runner.run_shell("echo deployed && exit 0", timeout=30)

        assert result.command == "echo"
        assert result.ok is True
        assert result.stdout.strip() == "deployed"


def test_get_command_runner():
    assert isinstance(get_command_runner(), SubprocessCommandRunner)
