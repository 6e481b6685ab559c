"""Pydantic schemas for request/response validation"""
from app.schemas.streaming import (
    RtspVendor,
    StreamProfile,
    HealthStatus,
    DeployMode,
    Nvr,
    NvrAuth,
    Camera,
    PortProbeResult,
    NvrHealthResult,
    OnvifDeviceInfo,
    OnvifProfile,
    OnvifStream,
    OnvifDiscoveryResult,
    DeployRequest,
    DeployResult,
    StreamInfo,
)

__all__ = [
    "RtspVendor",
    "StreamProfile",
    "HealthStatus",
    "DeployMode",
    "Nvr",
    "NvrAuth",
    "Camera",
    "PortProbeResult",
    "NvrHealthResult",
    "OnvifDeviceInfo",
    "OnvifProfile",
    "OnvifStream",
    "OnvifDiscoveryResult",
    "DeployRequest",
    "DeployResult",
    "StreamInfo",
]
