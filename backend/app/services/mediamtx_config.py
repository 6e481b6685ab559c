"""
MediaMTX Config Generator

Renders a MediaMTX YAML config exposing one on-demand path per camera.

The output embeds decrypted NVR credentials in cleartext. It must only be
handed to the deploy executor or the local runner; never log or return it.
"""
import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from app.core.validators import is_safe_identifier, is_safe_stream_url
from app.schemas.streaming import Camera, NvrAuth, StreamProfile
from app.services.rtsp_url import build_rtsp_url, mask_rtsp_url, normalize_vendor

logger = logging.getLogger(__name__)

SOURCE_MANUAL = "manual"
SOURCE_AUTO_PREFIX = "auto:"

_UNSAFE_PATH_CHARS = re.compile(r'[^a-zA-Z0-9._-]')


def sanitize_path_segment(value: str) -> str:
    """Replace every character outside [a-zA-Z0-9._-] with an underscore"""
    return _UNSAFE_PATH_CHARS.sub("_", value)


def get_webrtc_path(school_id: str, camera_id: str, external_id: Optional[str] = None) -> str:
    """
    Path key under which a camera is published.

    A non-blank external id (e.g. an ONVIF profile token) is sanitized and
    used in place of the camera id so paths survive camera re-creation.
    """
    external = (external_id or "").strip()
    if external:
        return f"schools/{school_id}/cameras/{sanitize_path_segment(external)}"
    return f"schools/{school_id}/cameras/{camera_id}"


def build_webrtc_url(path: str, base_url: Optional[str]) -> Optional[str]:
    """WHEP playback URL for a path key, or None without a configured base"""
    if not base_url or not base_url.strip():
        return None
    return f"{base_url.strip().rstrip('/')}/{path}/whep"


def resolve_camera_rtsp_url(
    camera: Camera,
    nvr: Optional[NvrAuth],
) -> Tuple[Optional[str], Optional[str]]:
    """
    Effective source URL of a camera and where it came from.

    Order: explicit stream_url ("manual"), then synthesis from the NVR
    ("auto:<vendor>") when auto generation is on and the NVR, channel and
    credentials are all known. Otherwise (None, None).
    """
    if camera.stream_url:
        return camera.stream_url, SOURCE_MANUAL

    if not camera.auto_generate_url or not camera.nvr_id or not camera.channel_no:
        return None, None
    if nvr is None:
        return None, None

    vendor = normalize_vendor(nvr.vendor)
    url = build_rtsp_url(nvr, camera.channel_no, camera.stream_profile, vendor)
    return url, f"{SOURCE_AUTO_PREFIX}{vendor.value}"


def codec_label(profile: StreamProfile) -> str:
    return "H.264" if profile == StreamProfile.SUB else "H.265"


def _is_writable(camera: Camera, rtsp_url: str) -> bool:
    """Every value copied into the document must stay on its own line and key"""
    return (
        is_safe_identifier(camera.id)
        and is_safe_identifier(camera.school_id)
        and is_safe_stream_url(rtsp_url)
    )


def build_mediamtx_config(
    cameras: Iterable[Camera],
    nvr_auth_by_id: Mapping[str, NvrAuth],
    rtsp_address: str = ":8554",
    hls_address: str = ":8888",
    webrtc_address: str = ":8889",
    source_close_after: str = "10s",
) -> str:
    """
    Generate the MediaMTX config document.

    Cameras are emitted in the order given; pass them in a stable order
    (e.g. by school then channel number) for byte-identical output. When two
    cameras map to the same path key the first resolvable one wins. Cameras
    whose id, school id or source URL could break out of its line (whitespace,
    control characters, an unparseable URL) are skipped and logged.

    Args:
        cameras: Cameras to publish
        nvr_auth_by_id: Decrypted NVR credentials keyed by NVR id
        rtsp_address: MediaMTX RTSP listen address
        hls_address: MediaMTX HLS listen address
        webrtc_address: MediaMTX WebRTC listen address
        source_close_after: Idle time before an on-demand source is closed

    Returns:
        Config text, lines joined with "\\n"
    """
    lines: List[str] = [
        "# Auto-generated MediaMTX config",
        "logLevel: info",
        "",
        "rtsp: yes",
        f"rtspAddress: {rtsp_address}",
        "",
        "hls: yes",
        f"hlsAddress: {hls_address}",
        "hlsAllowOrigin: '*'",
        "hlsAlwaysRemux: yes",
        "",
        "webrtc: yes",
        f"webrtcAddress: {webrtc_address}",
        "webrtcAllowOrigin: '*'",
        "",
        "paths:",
    ]

    used_paths: Dict[str, str] = {}
    skipped = 0

    for camera in cameras:
        path_key = get_webrtc_path(camera.school_id, camera.id, camera.external_id)
        if path_key in used_paths:
            logger.info(
                f"Skipping camera {camera.id}: path {path_key} already used by {used_paths[path_key]}",
                extra={
                    "event_type": "mediamtx_duplicate_path",
                    "camera_id": camera.id,
                    "path_key": path_key,
                },
            )
            skipped += 1
            continue

        nvr = nvr_auth_by_id.get(camera.nvr_id) if camera.nvr_id else None
        rtsp_url, _ = resolve_camera_rtsp_url(camera, nvr)
        if not rtsp_url:
            skipped += 1
            continue

        if not _is_writable(camera, rtsp_url):
            logger.warning(
                f"Skipping camera {camera.id!r}: unsafe value for config {mask_rtsp_url(rtsp_url)!r}",
                extra={"event_type": "mediamtx_unsafe_camera", "path_key": path_key},
            )
            skipped += 1
            continue

        used_paths[path_key] = camera.id
        lines.append(f"  # {camera.id} ({codec_label(camera.stream_profile)})")
        lines.append(f"  {path_key}:")
        lines.append(f"    source: {rtsp_url}")
        lines.append("    rtspTransport: tcp")
        lines.append("    sourceOnDemand: yes")
        lines.append(f"    sourceOnDemandCloseAfter: {source_close_after}")

    logger.info(
        f"Generated MediaMTX config with {len(used_paths)} paths",
        extra={
            "event_type": "mediamtx_config_generated",
            "path_count": len(used_paths),
            "skipped_count": skipped,
        },
    )
    return "\n".join(lines)
