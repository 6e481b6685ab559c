"""
RTSP URL synthesis, parsing, masking and vendor detection

Builds vendor-specific stream URLs for NVR channels and recognises the same
layouts in externally supplied URLs:

    hikvision  rtsp://u:p@host:port/Streaming/Channels/<c*100 + 1|2>
    seetong    rtsp://u:p@host:port/user=u&password=p&channel=<c>&stream=<0|1>.sdp
    dahua      rtsp://u:p@host:port/cam/realmonitor?channel=<c>&subtype=<0|1>
    generic    rtsp://u:p@host:port/ch<c>/<main|sub>/av_stream

All functions are pure.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from app.schemas.streaming import NvrAuth, RtspVendor, StreamProfile

logger = logging.getLogger(__name__)

DEFAULT_RTSP_PORT = 554
MASK = "***"

# Characters left as-is by JavaScript's encodeURIComponent besides [A-Za-z0-9_.~-]
_AUTH_SAFE_CHARS = "!*'()"

_HIKVISION_CHANNEL = re.compile(r'/Streaming/Channels/(\d+)')
_SEETONG_STREAM = re.compile(r'&stream=(\d)')
_DAHUA_SUBTYPE = re.compile(r'subtype=(\d)')
_PATH_PASSWORD = re.compile(r'([?&/]password=)([^&/?#]*)', re.IGNORECASE)
_FALLBACK_CREDENTIALS = re.compile(r'^rtsp://([^:@/]+):([^@/]+)@', re.IGNORECASE)


class InvalidRtspUrlError(ValueError):
    """Raised when a string is not a usable rtsp:// URL."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid RTSP URL: {reason}")


@dataclass
class ParsedRtspUrl:
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None


def encode_auth(value: str) -> str:
    """Percent-encode a username or password for use inside a URL."""
    return quote(value, safe=_AUTH_SAFE_CHARS)


def normalize_vendor(vendor: Union[str, RtspVendor, None]) -> RtspVendor:
    """
    Map a free-text vendor name onto a known URL layout.

    Matching is case-insensitive and accepts manufacturer strings such as
    "Hikvision Digital Technology". Unset or unknown vendors use the
    Hikvision layout.
    """
    if isinstance(vendor, RtspVendor):
        return vendor
    value = (vendor or "").strip().lower()
    if not value:
        return RtspVendor.HIKVISION
    for known in RtspVendor:
        if value == known.value:
            return known
    for known in RtspVendor:
        if known.value in value:
            return known
    return RtspVendor.HIKVISION


def _credentials(nvr: NvrAuth) -> tuple:
    return encode_auth(nvr.username), encode_auth(nvr.password)


def build_hikvision_rtsp_url(
    nvr: NvrAuth,
    channel_no: int,
    profile: StreamProfile = StreamProfile.MAIN,
) -> str:
    """Channel = channel_no * 100 + stream id (1=main, 2=sub)"""
    stream_id = 1 if profile == StreamProfile.MAIN else 2
    channel = channel_no * 100 + stream_id
    user, password = _credentials(nvr)
    return f"rtsp://{user}:{password}@{nvr.host}:{nvr.rtsp_port}/Streaming/Channels/{channel}"


def build_seetong_rtsp_url(
    nvr: NvrAuth,
    channel_no: int,
    profile: StreamProfile = StreamProfile.MAIN,
) -> str:
    """Credentials are repeated in the path; stream 0=main, 1=sub"""
    stream_id = 0 if profile == StreamProfile.MAIN else 1
    user, password = _credentials(nvr)
    return (
        f"rtsp://{user}:{password}@{nvr.host}:{nvr.rtsp_port}"
        f"/user={user}&password={password}&channel={channel_no}&stream={stream_id}.sdp"
    )


def build_dahua_rtsp_url(
    nvr: NvrAuth,
    channel_no: int,
    profile: StreamProfile = StreamProfile.MAIN,
) -> str:
    """Subtype 0=main, 1=sub"""
    subtype = 0 if profile == StreamProfile.MAIN else 1
    user, password = _credentials(nvr)
    return (
        f"rtsp://{user}:{password}@{nvr.host}:{nvr.rtsp_port}"
        f"/cam/realmonitor?channel={channel_no}&subtype={subtype}"
    )


def build_generic_rtsp_url(
    nvr: NvrAuth,
    channel_no: int,
    profile: StreamProfile = StreamProfile.MAIN,
) -> str:
    user, password = _credentials(nvr)
    return (
        f"rtsp://{user}:{password}@{nvr.host}:{nvr.rtsp_port}"
        f"/ch{channel_no}/{StreamProfile(profile).value}/av_stream"
    )


_BUILDERS = {
    RtspVendor.HIKVISION: build_hikvision_rtsp_url,
    RtspVendor.SEETONG: build_seetong_rtsp_url,
    RtspVendor.DAHUA: build_dahua_rtsp_url,
    RtspVendor.GENERIC: build_generic_rtsp_url,
}


def build_rtsp_url(
    nvr: NvrAuth,
    channel_no: int,
    profile: Union[StreamProfile, str] = StreamProfile.MAIN,
    vendor: Union[RtspVendor, str, None] = None,
) -> str:
    """
    Build the stream URL of an NVR channel in the vendor's layout.

    Args:
        nvr: Decrypted NVR credentials and RTSP endpoint
        channel_no: Vendor channel index (1-based)
        profile: main or sub stream
        vendor: Vendor name; falls back to nvr.vendor, then Hikvision

    Returns:
        rtsp:// URL with percent-encoded credentials
    """
    resolved = normalize_vendor(vendor if vendor is not None else nvr.vendor)
    return _BUILDERS[resolved](nvr, channel_no, StreamProfile(profile))


def parse_rtsp_url(rtsp_url: str) -> ParsedRtspUrl:
    """
    Split an rtsp:// URL into host, port and decoded credentials.

    Raises:
        InvalidRtspUrlError: For other schemes, a missing host or a bad port
    """
    try:
        parts = urlsplit(rtsp_url)
        if parts.scheme.lower() != "rtsp":
            raise InvalidRtspUrlError("not rtsp")
        host = parts.hostname
        if not host:
            raise InvalidRtspUrlError("missing host")
        port = parts.port if parts.port is not None else DEFAULT_RTSP_PORT
        if port <= 0 or port > 65535:
            raise InvalidRtspUrlError("invalid port")
    except InvalidRtspUrlError:
        raise
    except ValueError as e:
        raise InvalidRtspUrlError(str(e)) from e

    return ParsedRtspUrl(
        host=host,
        port=port,
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
    )


def mask_rtsp_url(rtsp_url: str) -> str:
    """
    Replace the password of an RTSP URL with ***.

    Passwords repeated in the path (Seetong layout) are masked too.
    Never raises: strings that do not parse fall back to a regex substitution.
    """
    try:
        parts = urlsplit(rtsp_url)
        if parts.scheme.lower() != "rtsp":
            return rtsp_url
        if not parts.password:
            return rtsp_url
        userinfo, _, hostport = parts.netloc.rpartition("@")
        user = userinfo.split(":", 1)[0]
        path = _PATH_PASSWORD.sub(rf'\g<1>{MASK}', parts.path)
        query = _PATH_PASSWORD.sub(rf'\g<1>{MASK}', parts.query)
        return urlunsplit((parts.scheme, f"{user}:{MASK}@{hostport}", path, query, parts.fragment))
    except ValueError:
        return _FALLBACK_CREDENTIALS.sub(rf'rtsp://\1:{MASK}@', rtsp_url)


def detect_vendor_from_url(url: str) -> RtspVendor:
    """Infer the vendor layout from the path/query shape of a URL"""
    if "/Streaming/Channels/" in url:
        return RtspVendor.HIKVISION
    if "&stream=" in url and ".sdp" in url:
        return RtspVendor.SEETONG
    if "/cam/realmonitor" in url:
        return RtspVendor.DAHUA
    return RtspVendor.GENERIC


def profile_from_hikvision_channel(channel: int) -> Optional[StreamProfile]:
    """
    Decode the stream id of a Hikvision channel number.

    Only stream ids 1 (main) and 2 (sub) are known; any other id returns None.
    """
    stream_id = channel % 100
    if stream_id == 1:
        return StreamProfile.MAIN
    if stream_id == 2:
        return StreamProfile.SUB
    return None


def detect_profile_from_url(url: str) -> StreamProfile:
    """Infer main/sub from a URL; unrecognised shapes are treated as main"""
    hikvision = _HIKVISION_CHANNEL.search(url)
    if hikvision:
        profile = profile_from_hikvision_channel(int(hikvision.group(1)))
        if profile is None:
            logger.debug(
                "Unknown Hikvision stream id, assuming main profile",
                extra={"event_type": "rtsp_profile_unknown", "channel": hikvision.group(1)},
            )
            return StreamProfile.MAIN
        return profile

    seetong = _SEETONG_STREAM.search(url)
    if seetong:
        return StreamProfile.SUB if seetong.group(1) == "1" else StreamProfile.MAIN

    dahua = _DAHUA_SUBTYPE.search(url)
    if dahua:
        return StreamProfile.SUB if dahua.group(1) == "1" else StreamProfile.MAIN

    if "/sub/" in url:
        return StreamProfile.SUB

    return StreamProfile.MAIN
