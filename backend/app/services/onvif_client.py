"""
ONVIF Device Client

Queries a known NVR/camera over ONVIF SOAP for its identity and media
profiles, and resolves each profile's RTSP stream URI.

The client is a thin orchestrator over a ``DeviceSession``: production uses
``ONVIFZeepSession`` (onvif-zeep, blocking calls moved to the default
executor), tests inject a fake through ``session_factory``.

Every remote operation (device.init, getDeviceInformation, getProfiles,
getStreamUri) gets its own timer. A timed-out call is abandoned rather than
cancelled, since SOAP has no cancel primitive; the executor thread may keep
running until the socket gives up.

Usage:
    client = get_onvif_client()
    info = await client.fetch_device_info("192.168.1.64", 80, "admin", "secret")
    result = await client.fetch_profiles("192.168.1.64", 80, "admin", "secret")
"""
import asyncio
import functools
import logging
import re
from typing import Callable, List, Optional, Protocol

from app.core.async_utils import OperationTimeoutError, run_with_concurrency, with_timeout
from app.core.config import settings
from app.schemas.streaming import (
    OnvifDeviceInfo,
    OnvifDiscoveryResult,
    OnvifProfile,
    OnvifStream,
)
from app.services.rtsp_url import mask_rtsp_url

logger = logging.getLogger(__name__)

# Try to import onvif-zeep for the production session
try:
    from onvif import ONVIFCamera
    ONVIF_ZEEP_AVAILABLE = True
except ImportError:
    ONVIF_ZEEP_AVAILABLE = False
    ONVIFCamera = None
    logger.warning("onvif-zeep not installed. ONVIF device queries will be unavailable.")


DEFAULT_TIMEOUT_MS = 5000
DEFAULT_CONCURRENCY = 4

STREAM_SETUP = {
    'Stream': 'RTP-Unicast',
    'Transport': {'Protocol': 'RTSP'}
}

_CHANNELS_PATTERN = re.compile(r'Channels/(\d+)', re.IGNORECASE)
# SOAP fault subcodes and reasons devices return for rejected credentials
_AUTH_FAULT_MARKERS = ("notauthorized", "not authorized", "unauthorized", "failedauthentication", "authentication failed")
# 401 only in an HTTP status position, never as a bare number (ports, addresses, tokens)
_HTTP_401_PATTERN = re.compile(r'(?:\bhttp/\d(?:\.\d)?\s+|\bstatus(?:[ _]code)?\s*[:=]?\s*|\bcode\s*[:=]\s*)401\b', re.IGNORECASE)


class OnvifError(RuntimeError):
    """Raised when an ONVIF operation fails for a reason other than a timeout."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class OnvifAuthError(OnvifError):
    """The device rejected the supplied credentials."""


class DeviceSession(Protocol):
    """One authenticated connection to an ONVIF device."""

    async def init(self) -> None: ...

    async def get_device_information(self) -> OnvifDeviceInfo: ...

    async def get_profiles(self) -> List[OnvifProfile]: ...

    async def get_stream_uri(self, profile_token: str) -> Optional[str]: ...


SessionFactory = Callable[[str, int, str, str], DeviceSession]


class ONVIFZeepSession:
    """DeviceSession backed by onvif-zeep."""

    def __init__(self, host: str, port: int, username: str, password: str):
        self.host = host
        self.port = port
        self._username = username
        self._password = password
        self._camera = None
        self._devicemgmt = None
        self._media = None

    async def _call(self, func: Callable, *args):
        """Run one blocking SDK call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    def _connect(self) -> None:
        # ONVIFCamera performs GetCapabilities in its constructor
        self._camera = ONVIFCamera(self.host, self.port, self._username, self._password)
        self._devicemgmt = self._camera.create_devicemgmt_service()
        self._media = self._camera.create_media_service()

    async def init(self) -> None:
        if not ONVIF_ZEEP_AVAILABLE:
            raise RuntimeError(
                "ONVIF queries unavailable: onvif-zeep package not installed. "
                "Install with: pip install onvif-zeep"
            )
        await self._call(self._connect)

    async def get_device_information(self) -> OnvifDeviceInfo:
        info = await self._call(self._devicemgmt.GetDeviceInformation)
        return OnvifDeviceInfo(
            manufacturer=getattr(info, "Manufacturer", None),
            model=getattr(info, "Model", None),
            firmware_version=getattr(info, "FirmwareVersion", None),
            serial_number=getattr(info, "SerialNumber", None),
            hardware_id=getattr(info, "HardwareId", None),
        )

    async def get_profiles(self) -> List[OnvifProfile]:
        profiles = await self._call(self._media.GetProfiles) or []
        result = []
        for profile in profiles:
            token = getattr(profile, "token", None)
            if not token:
                continue
            encoder = getattr(profile, "VideoEncoderConfiguration", None)
            result.append(OnvifProfile(
                token=token,
                name=getattr(profile, "Name", None),
                video_encoder_token=getattr(encoder, "token", None) if encoder else None,
            ))
        return result

    async def get_stream_uri(self, profile_token: str) -> Optional[str]:
        response = await self._call(
            self._media.GetStreamUri,
            {'ProfileToken': profile_token, 'StreamSetup': STREAM_SETUP},
        )
        return getattr(response, "Uri", None) or None


def parse_channel_no(uri: Optional[str]) -> Optional[int]:
    """
    Infer the NVR channel index from a Hikvision-style stream URI.

    ``.../Streaming/Channels/302`` -> 3. Non-positive results are discarded.
    """
    if not uri:
        return None
    match = _CHANNELS_PATTERN.search(uri)
    if not match:
        return None
    channel = int(match.group(1)) // 100
    return channel if channel > 0 else None


def _is_auth_failure(error: Exception) -> bool:
    """
    Credential rejection, recognised from a zeep TransportError status, a
    SOAP fault subcode (ter:NotAuthorized) or the message text.
    """
    if getattr(error, "status_code", None) == 401:
        return True
    subcodes = getattr(error, "subcodes", None) or ()
    if any("notauthorized" in str(subcode).lower() for subcode in subcodes):
        return True
    text = str(error).lower()
    if _HTTP_401_PATTERN.search(text):
        return True
    return any(marker in text for marker in _AUTH_FAULT_MARKERS)


class ONVIFClient:
    """
    Fetches device identity and stream profiles from ONVIF devices.

    Args:
        session_factory: Builds a DeviceSession for (host, port, username, password)
        timeout_ms: Default per-operation wait bound
        concurrency: Default cap on simultaneous GetStreamUri calls
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self._session_factory = session_factory or ONVIFZeepSession
        self.timeout_ms = timeout_ms
        self.concurrency = max(1, concurrency)

    async def _guarded(self, awaitable, timeout_ms: int, operation: str):
        """Apply the operation timer and classify SDK failures."""
        try:
            return await with_timeout(awaitable, timeout_ms, operation)
        except OperationTimeoutError:
            raise
        except Exception as e:
            if _is_auth_failure(e):
                raise OnvifAuthError(operation, str(e)) from e
            raise OnvifError(operation, str(e)) from e

    async def _open_session(
        self,
        host: str,
        onvif_port: int,
        username: str,
        password: str,
        timeout_ms: int,
    ) -> DeviceSession:
        session = self._session_factory(host, onvif_port, username, password)
        await self._guarded(session.init(), timeout_ms, "device.init")
        return session

    async def fetch_device_info(
        self,
        host: str,
        onvif_port: int,
        username: str,
        password: str,
        timeout_ms: Optional[int] = None,
    ) -> OnvifDeviceInfo:
        """
        Query manufacturer, model, firmware and serial number.

        Raises:
            OperationTimeoutError: If device.init or getDeviceInformation exceeds its budget
            OnvifAuthError: If the device rejects the credentials
            OnvifError: For any other SDK failure
        """
        timeout_ms = timeout_ms or self.timeout_ms
        session = await self._open_session(host, onvif_port, username, password, timeout_ms)
        info = await self._guarded(
            session.get_device_information(), timeout_ms, "getDeviceInformation"
        ) or OnvifDeviceInfo()

        logger.info(
            f"ONVIF device info for {host}: {info.manufacturer} {info.model}",
            extra={
                "event_type": "onvif_device_info",
                "host": host,
                "manufacturer": info.manufacturer,
                "model": info.model,
            },
        )
        return info

    async def fetch_profiles(
        self,
        host: str,
        onvif_port: int,
        username: str,
        password: str,
        timeout_ms: Optional[int] = None,
        concurrency: Optional[int] = None,
    ) -> OnvifDiscoveryResult:
        """
        List media profiles and resolve each profile's RTSP URI.

        URI lookups run on a worker pool of ``concurrency`` workers (minimum 1).
        A failed lookup yields ``uri=None, channel_no=None`` for that profile
        only; it never fails the batch.

        Raises:
            OperationTimeoutError: If device.init or getProfiles exceeds its budget
            OnvifAuthError: If the device rejects the credentials
            OnvifError: For any other SDK failure before URI resolution
        """
        timeout_ms = timeout_ms or self.timeout_ms
        limit = max(1, concurrency if concurrency is not None else self.concurrency)

        session = await self._open_session(host, onvif_port, username, password, timeout_ms)
        profiles = await self._guarded(session.get_profiles(), timeout_ms, "getProfiles") or []

        async def resolve(profile: OnvifProfile) -> OnvifStream:
            try:
                uri = await with_timeout(
                    session.get_stream_uri(profile.token), timeout_ms, "getStreamUri"
                )
            except Exception as e:
                logger.warning(
                    f"Failed to resolve stream URI for profile {profile.token}: {e}",
                    extra={
                        "event_type": "onvif_stream_uri_failed",
                        "host": host,
                        "profile_token": profile.token,
                        "error_type": type(e).__name__,
                    },
                )
                return OnvifStream(profile=profile, uri=None, channel_no=None)
            return OnvifStream(profile=profile, uri=uri, channel_no=parse_channel_no(uri))

        streams = await run_with_concurrency(profiles, limit, resolve)

        resolved = sum(1 for stream in streams if stream.uri)
        logger.info(
            f"ONVIF profiles for {host}: {resolved}/{len(profiles)} stream URIs resolved",
            extra={
                "event_type": "onvif_profiles_fetched",
                "host": host,
                "profile_count": len(profiles),
                "resolved_count": resolved,
                "uris": [mask_rtsp_url(stream.uri) for stream in streams if stream.uri],
            },
        )
        return OnvifDiscoveryResult(profiles=profiles, streams=streams)


# Singleton instance
_onvif_client: Optional[ONVIFClient] = None


def get_onvif_client() -> ONVIFClient:
    """
    Get the singleton ONVIFClient configured from settings.

    Returns:
        The shared client instance
    """
    global _onvif_client
    if _onvif_client is None:
        _onvif_client = ONVIFClient(
            timeout_ms=settings.ONVIF_TIMEOUT_MS,
            concurrency=settings.ONVIF_CONCURRENCY,
        )
    return _onvif_client
