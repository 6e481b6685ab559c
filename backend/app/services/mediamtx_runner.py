"""
Local MediaMTX launcher

Starts a MediaMTX binary installed next to the backend with a freshly
generated config. Used on single-host installs where the backend and the
streaming server share a machine.
"""
import asyncio
import logging
import os
import sys
from typing import Callable, Optional

logger = logging.getLogger(__name__)

AUTOGEN_CONFIG_NAME = "mediamtx.autogen.yml"
DEFAULT_CONFIG_NAME = "mediamtx.yml"


def mediamtx_executable(mtx_dir: str) -> str:
    name = "mediamtx.exe" if sys.platform == "win32" else "mediamtx"
    return os.path.join(mtx_dir, name)


def write_autogen_config(mtx_dir: str, build_config: Callable[[], str]) -> str:
    """
    Generate the config and write it next to the binary.

    Falls back to the stock mediamtx.yml path when generation or the write
    fails; the failure is logged, not raised.

    Returns:
        Path of the config file MediaMTX should be started with
    """
    autogen_path = os.path.join(mtx_dir, AUTOGEN_CONFIG_NAME)
    try:
        content = build_config()
        with open(autogen_path, "w", encoding="utf-8") as f:
            f.write(content)
    except Exception as e:
        logger.warning(
            f"MediaMTX config autogen failed, using default config: {e}",
            extra={"event_type": "mediamtx_autogen_failed", "error_type": type(e).__name__},
        )
        return os.path.join(mtx_dir, DEFAULT_CONFIG_NAME)

    logger.info(
        f"MediaMTX config autogen: {autogen_path}",
        extra={"event_type": "mediamtx_autogen_written", "path": autogen_path},
    )
    return autogen_path


async def start_mediamtx(mtx_dir: Optional[str], build_config: Callable[[], str]) -> bool:
    """
    Launch MediaMTX in the background with an autogenerated config.

    The process is started in its own session and not awaited; it outlives
    the request that started it.

    Args:
        mtx_dir: Directory holding the MediaMTX binary
        build_config: Returns the config text (see build_mediamtx_config)

    Returns:
        True if the process was spawned, False if MediaMTX is missing or failed to start
    """
    if not mtx_dir:
        logger.info("MEDIAMTX_DIR not configured, skipping MediaMTX autostart")
        return False

    executable = mediamtx_executable(mtx_dir)
    if not os.path.isfile(executable):
        logger.warning(
            f"MediaMTX not found at {executable}",
            extra={"event_type": "mediamtx_not_found", "path": executable},
        )
        return False

    config_path = write_autogen_config(mtx_dir, build_config)

    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            config_path,
            cwd=mtx_dir,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        logger.warning(
            f"MediaMTX could not be started: {e}",
            extra={"event_type": "mediamtx_start_failed", "path": executable},
        )
        return False

    logger.info(
        f"MediaMTX started in background (pid {process.pid})",
        extra={"event_type": "mediamtx_started", "pid": process.pid, "config": config_path},
    )
    return True
