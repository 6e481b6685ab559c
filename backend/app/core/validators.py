"""
Input validators for fields that reach a filesystem path, network host,
or shell command string.

The predicates are pure whitelist checks. ``validate_deploy_request`` applies
them to a whole deploy request and raises ``InputValidationError`` naming the
offending field; the deploy executor itself performs no validation.
"""
import math
import os
import re
from typing import Any, Iterable, Optional
from urllib.parse import urlparse

from app.schemas.streaming import Camera, DeployMode, DeployRequest, NvrAuth
from app.services.rtsp_url import InvalidRtspUrlError, parse_rtsp_url

SAFE_HOST_PATTERN = re.compile(r'^[a-zA-Z0-9.-]+$')
SAFE_USER_PATTERN = re.compile(r'^[a-zA-Z0-9._-]+$')
# Identifiers that end up in generated config keys and comments
SAFE_IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z0-9._-]+$')
# Whitespace, C0 controls and DEL; any of them can start a new config line or key
UNSAFE_URL_CHARS = re.compile(r'[\s\x00-\x1f\x7f]')

MAX_HOSTNAME_LENGTH = 253
MAX_LABEL_LENGTH = 63

# Characters that would let a restart command chain, redirect or substitute
BLOCKED_COMMAND_CHARS = ("&", "|", ";", ">", "<", "`", "\n", "\r")

MASKED_PASSWORD = "***"


class InputValidationError(ValueError):
    """Raised when a caller-supplied field fails a safety check."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


def to_number(value: Any) -> Optional[int]:
    """
    Coerce a loosely typed value (int, float, numeric string) to an int.

    Returns None for missing, empty, boolean or non-finite values; floats are
    truncated toward zero.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num):
        return None
    return math.trunc(num)


def is_valid_port(value: Any) -> bool:
    """Port must be an integer in 1..65535."""
    num = to_number(value)
    if num is None:
        return False
    return 0 < num <= 65535


def is_valid_channel_no(value: Any) -> bool:
    """Channel numbers are positive integers."""
    num = to_number(value)
    if num is None:
        return False
    return num > 0


def is_safe_host(value: str) -> bool:
    """
    Hostname or IPv4 literal made of [a-zA-Z0-9.-] with resolvable labels.

    Empty labels ("a..b") and labels over 63 characters are rejected; the
    resolver cannot encode them.
    """
    if not value or len(value) > MAX_HOSTNAME_LENGTH:
        return False
    if SAFE_HOST_PATTERN.match(value) is None:
        return False
    labels = value[:-1].split(".") if value.endswith(".") else value.split(".")
    return all(0 < len(label) <= MAX_LABEL_LENGTH for label in labels)


def is_safe_user(value: str) -> bool:
    return bool(value) and SAFE_USER_PATTERN.match(value) is not None


def is_safe_remote_path(value: str) -> bool:
    return value.startswith("/") and ".." not in value and "~" not in value


def is_safe_local_path(value: str) -> bool:
    if not os.path.isabs(value):
        return False
    return ".." not in value


def is_safe_restart_command(value: str) -> bool:
    """
    Restart commands are passed to a shell as one opaque string, so any
    character that can chain, pipe or redirect is rejected outright.
    """
    cmd = value.strip()
    if not cmd:
        return False
    return not any(ch in cmd for ch in BLOCKED_COMMAND_CHARS)


def is_masked_rtsp_url(value: str) -> bool:
    """Detect an RTSP URL whose password is still the *** display placeholder."""
    try:
        parsed = urlparse(value)
        if parsed.scheme.lower() == "rtsp" and parsed.netloc:
            return parsed.password == MASKED_PASSWORD
    except ValueError:
        pass
    return f":{MASKED_PASSWORD}@" in value


def is_safe_identifier(value: str) -> bool:
    return bool(value) and SAFE_IDENTIFIER_PATTERN.match(value) is not None


def is_safe_stream_url(value: str) -> bool:
    """
    A stream URL that can be written verbatim as a single config value:
    a parseable rtsp:// URL with no whitespace or control characters.
    """
    if not value or UNSAFE_URL_CHARS.search(value):
        return False
    try:
        parse_rtsp_url(value)
    except InvalidRtspUrlError:
        return False
    return True


def validate_stream_url(value: Optional[str], field: str = "stream_url") -> None:
    """Reject a stream URL that would persist the masked placeholder as a real password."""
    if value and is_masked_rtsp_url(value):
        raise InputValidationError(field, "masked RTSP URL cannot be saved; re-enter the password")


def validate_config_sources(cameras: Iterable[Camera], nvrs: Iterable[NvrAuth] = ()) -> None:
    """
    Check every camera and NVR field that is copied into a generated config.

    Camera and school ids become path keys and comments, stream URLs become
    ``source:`` values and NVR hosts end up inside synthesized URLs.

    Raises:
        InputValidationError: On the first field that fails validation
    """
    for index, nvr in enumerate(nvrs):
        if not is_safe_host(nvr.host):
            raise InputValidationError(f"nvrs[{index}].host", "invalid nvr host")

    for index, camera in enumerate(cameras):
        prefix = f"cameras[{index}]"
        if not is_safe_identifier(camera.id):
            raise InputValidationError(f"{prefix}.id", "invalid camera id")
        if not is_safe_identifier(camera.school_id):
            raise InputValidationError(f"{prefix}.school_id", "invalid school id")
        if camera.stream_url:
            validate_stream_url(camera.stream_url, field=f"{prefix}.stream_url")
            if not is_safe_stream_url(camera.stream_url):
                raise InputValidationError(f"{prefix}.stream_url", "invalid RTSP stream URL")


def validate_deploy_request(request: DeployRequest, allow_restart_commands: bool = False) -> None:
    """
    Check every deploy field that reaches a shell, remote host or filesystem.

    Args:
        request: Parsed deploy request
        allow_restart_commands: Whether restart commands are permitted at all

    Raises:
        InputValidationError: On the first field that fails validation
    """
    if request.mode == DeployMode.SSH:
        ssh = request.ssh
        if ssh is None or not ssh.host or not ssh.user or not ssh.remote_path:
            raise InputValidationError("ssh", "ssh config required")
        if not is_safe_host(ssh.host) or not is_safe_user(ssh.user):
            raise InputValidationError("ssh.host", "invalid ssh host/user")
        if not is_safe_remote_path(ssh.remote_path):
            raise InputValidationError("ssh.remote_path", "invalid remote path")
        if ssh.port is not None and not is_valid_port(ssh.port):
            raise InputValidationError("ssh.port", "invalid ssh port")
        _check_restart_command(ssh.restart_command, "ssh", allow_restart_commands)

    elif request.mode == DeployMode.DOCKER:
        docker = request.docker
        if docker is None or not docker.container or not docker.config_path:
            raise InputValidationError("docker", "docker config required")
        # The container name becomes part of a docker CLI argument
        if not is_safe_user(docker.container):
            raise InputValidationError("docker.container", "invalid docker container")
        if not is_safe_remote_path(docker.config_path):
            raise InputValidationError("docker.config_path", "invalid docker config path")

    elif request.mode == DeployMode.LOCAL:
        local = request.local
        if local is None or not local.path:
            raise InputValidationError("local", "local path required")
        if not is_safe_local_path(local.path):
            raise InputValidationError("local.path", "invalid local path")
        _check_restart_command(local.restart_command, "local", allow_restart_commands)


def _check_restart_command(command: Optional[str], prefix: str, allowed: bool) -> None:
    if not command:
        return
    if not allowed:
        raise InputValidationError(f"{prefix}.restart_command", f"{prefix} restart_command disabled")
    if not is_safe_restart_command(command):
        raise InputValidationError(f"{prefix}.restart_command", f"invalid {prefix} restart_command")
