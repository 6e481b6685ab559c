"""Pytest fixtures and configuration for test suite

This module provides:
1. A deterministic ENCRYPTION_KEY, set before any application import
2. Factory functions for creating test objects with sensible defaults
3. Pytest fixtures that use the factory functions

Factory Functions:
    - make_nvr_auth(**overrides) -> NvrAuth
    - make_camera(**overrides) -> Camera
    - make_nvr(**overrides) -> Nvr
"""
import os

# Settings() requires ENCRYPTION_KEY at import time
os.environ.setdefault("ENCRYPTION_KEY", "MDEyMzQ1Njc4OTAxMjM0NTY3ODkwMTIzNDU2Nzg5MDE=")

import uuid

import pytest

from app.schemas.streaming import Camera, Nvr, NvrAuth, StreamProfile
from app.utils.encryption import encrypt_secret


# =============================================================================
# Factory Functions for Test Objects
# =============================================================================

def make_nvr_auth(
    id: str = "nvr-1",
    host: str = "192.168.1.64",
    rtsp_port: int = 554,
    username: str = "admin",
    password: str = "secret",
    vendor: str = None,
    **overrides
) -> NvrAuth:
    """
    Factory function to create decrypted NVR credentials.

    Example:
        nvr = make_nvr_auth(vendor="dahua", password="p@ss")
    """
    return NvrAuth(
        id=id,
        host=host,
        rtsp_port=rtsp_port,
        username=username,
        password=password,
        vendor=vendor,
        **overrides
    )


def make_camera(
    id: str = None,
    school_id: str = "school-1",
    nvr_id: str = "nvr-1",
    channel_no: int = 1,
    stream_profile: StreamProfile = StreamProfile.MAIN,
    stream_url: str = None,
    auto_generate_url: bool = True,
    external_id: str = None,
    **overrides
) -> Camera:
    """
    Factory function to create Camera instances for testing.

    Args:
        id: Camera id. If None, generates a new UUID.
        **overrides: Any additional Camera fields.

    Example:
        camera = make_camera(channel_no=3, stream_profile=StreamProfile.SUB)
    """
    if id is None:
        id = str(uuid.uuid4())

    return Camera(
        id=id,
        school_id=school_id,
        nvr_id=nvr_id,
        channel_no=channel_no,
        stream_profile=stream_profile,
        stream_url=stream_url,
        auto_generate_url=auto_generate_url,
        external_id=external_id,
        **overrides
    )


def make_nvr(
    id: str = "nvr-1",
    school_id: str = "school-1",
    host: str = "192.168.1.64",
    username: str = "admin",
    password: str = "secret",
    vendor: str = "hikvision",
    **overrides
) -> Nvr:
    """Factory function to create a stored NVR record with an encrypted password."""
    return Nvr(
        id=id,
        school_id=school_id,
        host=host,
        username=username,
        password_encrypted=encrypt_secret(password),
        vendor=vendor,
        **overrides
    )


# =============================================================================
# Pytest Fixtures
# =============================================================================

@pytest.fixture
def nvr_auth():
    """Hikvision NVR credentials"""
    return make_nvr_auth(vendor="hikvision")


@pytest.fixture
def camera():
    """Auto-generated main-stream camera on channel 1 of nvr-1"""
    return make_camera(id="cam-1")
