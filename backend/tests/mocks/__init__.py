"""
Test doubles for the device-facing services.

Provides a scripted ONVIF DeviceSession and a scripted CommandRunner
so tests never touch the network or spawn processes.
"""
from tests.mocks.onvif_mocks import (
    FakeDeviceSession,
    create_profiles,
    session_factory_for,
)
from tests.mocks.command_mocks import (
    FakeCommandRunner,
    RecordedCommand,
    failed_result,
    not_found_error,
)

__all__ = [
    # ONVIF
    "FakeDeviceSession",
    "create_profiles",
    "session_factory_for",
    # Commands
    "FakeCommandRunner",
    "RecordedCommand",
    "failed_result",
    "not_found_error",
]
