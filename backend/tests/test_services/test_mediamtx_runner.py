"""Unit tests for the local MediaMTX launcher"""
import asyncio
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.services.mediamtx_runner import (
    AUTOGEN_CONFIG_NAME,
    DEFAULT_CONFIG_NAME,
    mediamtx_executable,
    start_mediamtx,
    write_autogen_config,
)


CONFIG = "# Auto-generated MediaMTX config\npaths:"


@pytest.fixture
def mtx_dir(tmp_path):
    """Directory with a placeholder MediaMTX binary"""
    executable = tmp_path / ("mediamtx.exe" if sys.platform == "win32" else "mediamtx")
    executable.write_text("")
    return tmp_path


class TestWriteAutogenConfig:
    """Test config generation next to the binary"""

    def test_writes_autogen_file(self, tmp_path):
        path = write_autogen_config(str(tmp_path), lambda: CONFIG)

        assert path == str(tmp_path / AUTOGEN_CONFIG_NAME)
        assert (tmp_path / AUTOGEN_CONFIG_NAME).read_text(encoding="utf-8") == CONFIG

    def test_falls_back_when_generation_fails(self, tmp_path):
        def broken():
            raise ValueError("bad camera row")

        path = write_autogen_config(str(tmp_path), broken)

        assert path == str(tmp_path / DEFAULT_CONFIG_NAME)
        assert not (tmp_path / AUTOGEN_CONFIG_NAME).exists()

    def test_falls_back_when_write_fails(self, tmp_path):
        missing = tmp_path / "missing"

        path = write_autogen_config(str(missing), lambda: CONFIG)

        assert path == str(missing / DEFAULT_CONFIG_NAME)


class TestStartMediaMtx:
    """Test background launch"""

    def test_executable_name(self):
        assert mediamtx_executable("/opt/mtx").startswith("/opt/mtx")

    @pytest.mark.asyncio
    async def test_not_configured(self):
        assert await start_mediamtx(None, lambda: CONFIG) is False
        assert await start_mediamtx("", lambda: CONFIG) is False

    @pytest.mark.asyncio
    async def test_binary_missing(self, tmp_path):
        build = MagicMock(return_value=CONFIG)

        assert await start_mediamtx(str(tmp_path), build) is False
        build.assert_not_called()

    @pytest.mark.asyncio
    async def test_spawns_detached_with_autogen_config(self, mtx_dir):
        process = MagicMock(pid=4242)
        spawn = AsyncMock(return_value=process)

        with patch("app.services.mediamtx_runner.asyncio.create_subprocess_exec", spawn):
            started = await start_mediamtx(str(mtx_dir), lambda: CONFIG)

        assert started is True
        args, kwargs = spawn.call_args
        assert args == (mediamtx_executable(str(mtx_dir)), str(mtx_dir / AUTOGEN_CONFIG_NAME))
        assert kwargs["cwd"] == str(mtx_dir)
        assert kwargs["start_new_session"] is True
        assert kwargs["stdout"] == asyncio.subprocess.DEVNULL

    @pytest.mark.asyncio
    async def test_spawn_failure(self, mtx_dir):
        spawn = AsyncMock(side_effect=PermissionError("not executable"))

        with patch("app.services.mediamtx_runner.asyncio.create_subprocess_exec", spawn):
            assert await start_mediamtx(str(mtx_dir), lambda: CONFIG) is False
