"""
MediaMTX Config Deploy Executor

Ships a generated MediaMTX config to its target and optionally restarts the
server:

    local   write to an absolute path, then run the restart command via the shell
    ssh     scp to user@host:remote_path, then run the restart command over ssh
    docker  docker cp into the container, then docker restart unless restart is False

The content is staged in a private temp file that is removed on every exit
path. No step is retried.

The executor trusts its input. Callers must run
``app.core.validators.validate_deploy_request`` first.
"""
import asyncio
import logging
import os
import tempfile
from contextlib import contextmanager
from typing import Iterator, Optional

from app.schemas.streaming import DeployMode, DeployRequest, DeployResult
from app.services.command_runner import CommandRunner, SubprocessCommandRunner

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22

# Generous bound for scp/ssh/docker against slow links
COMMAND_TIMEOUT_SEC = 120


class DeployError(RuntimeError):
    """The deploy request is structurally unusable (missing target section, unknown mode)."""


class DeployWriteError(DeployError):
    """The config could not be written to its local destination."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"cannot write {path}: {reason}")


def _write_text(path: str, content: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


@contextmanager
def temporary_config_file(content: str) -> Iterator[str]:
    """
    Write ``content`` to a private temp file and yield its path.

    The file is created with mode 0600 and deleted when the block exits,
    whether it returns or raises.
    """
    fd, path = tempfile.mkstemp(prefix="mediamtx_", suffix=".yml")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


async def _deploy_local(content: str, request: DeployRequest, runner: CommandRunner) -> DeployResult:
    local = request.local
    if local is None or not local.path:
        raise DeployError("local path required")

    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, _write_text, local.path, content)
    except OSError as e:
        raise DeployWriteError(local.path, e.strerror or type(e).__name__) from e

    restarted = False
    if local.restart_command:
        (await runner.run_shell(local.restart_command, timeout=COMMAND_TIMEOUT_SEC)).check()
        restarted = True

    return DeployResult(mode=DeployMode.LOCAL, path=local.path, restarted=restarted)


async def _deploy_ssh(temp_path: str, request: DeployRequest, runner: CommandRunner) -> DeployResult:
    ssh = request.ssh
    if ssh is None:
        raise DeployError("ssh config required")

    port = ssh.port or DEFAULT_SSH_PORT
    destination = f"{ssh.user}@{ssh.host}"

    (await runner.run(
        "scp",
        ["-P", str(port), temp_path, f"{destination}:{ssh.remote_path}"],
        timeout=COMMAND_TIMEOUT_SEC,
    )).check()

    restarted = False
    if ssh.restart_command:
        (await runner.run(
            "ssh",
            ["-p", str(port), destination, ssh.restart_command],
            timeout=COMMAND_TIMEOUT_SEC,
        )).check()
        restarted = True

    return DeployResult(mode=DeployMode.SSH, port=port, path=ssh.remote_path, restarted=restarted)


async def _deploy_docker(temp_path: str, request: DeployRequest, runner: CommandRunner) -> DeployResult:
    docker = request.docker
    if docker is None:
        raise DeployError("docker config required")

    (await runner.run(
        "docker",
        ["cp", temp_path, f"{docker.container}:{docker.config_path}"],
        timeout=COMMAND_TIMEOUT_SEC,
    )).check()

    restarted = False
    if docker.restart is not False:
        (await runner.run(
            "docker", ["restart", docker.container], timeout=COMMAND_TIMEOUT_SEC
        )).check()
        restarted = True

    return DeployResult(mode=DeployMode.DOCKER, path=docker.config_path, restarted=restarted)


async def deploy_mediamtx_config(
    content: str,
    request: DeployRequest,
    runner: Optional[CommandRunner] = None,
) -> DeployResult:
    """
    Deploy a MediaMTX config according to ``request.mode``.

    Args:
        content: Generated config text (contains credentials)
        request: Validated deploy target
        runner: Command runner; defaults to real subprocesses

    Returns:
        DeployResult describing what was written and whether a restart ran

    Raises:
        DeployError: If the section for the requested mode is missing
        DeployWriteError: If a local destination cannot be written
        CommandError: If scp/ssh/docker or the restart command fails
    """
    runner = runner or SubprocessCommandRunner()
    mode = DeployMode(request.mode)

    logger.info(
        f"Deploying MediaMTX config via {mode.value}",
        extra={"event_type": "mediamtx_deploy_started", "mode": mode.value},
    )

    try:
        with temporary_config_file(content) as temp_path:
            if mode == DeployMode.LOCAL:
                result = await _deploy_local(content, request, runner)
            elif mode == DeployMode.SSH:
                result = await _deploy_ssh(temp_path, request, runner)
            elif mode == DeployMode.DOCKER:
                result = await _deploy_docker(temp_path, request, runner)
            else:
                raise DeployError("invalid deploy mode")
    except Exception as e:
        logger.error(
            f"MediaMTX deploy via {mode.value} failed: {e}",
            extra={
                "event_type": "mediamtx_deploy_failed",
                "mode": mode.value,
                "error_type": type(e).__name__,
            },
        )
        raise

    logger.info(
        f"MediaMTX config deployed via {mode.value}",
        extra={
            "event_type": "mediamtx_deploy_completed",
            "mode": mode.value,
            "restarted": result.restarted,
        },
    )
    return result
