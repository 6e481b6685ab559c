"""
Streaming integration API endpoints

Device-facing tools for NVRs and the MediaMTX streaming server:
- POST /streaming/rtsp/preview - Build a vendor RTSP URL for an NVR channel
- POST /streaming/rtsp/detect - Detect vendor and profile of an RTSP URL
- POST /streaming/rtsp/test - TCP-probe the host/port of an RTSP URL
- POST /streaming/rtsp/info - Inspect a stream with ffprobe
- POST /streaming/nvr/health - Probe HTTP/ONVIF/RTSP ports of an NVR
- POST /streaming/nvr/onvif - Fetch ONVIF device info and stream profiles
- POST /streaming/cameras/stream - Resolve playback details (WHEP URL, source, codec) of a camera
- POST /streaming/mediamtx/deploy - Generate and deploy a MediaMTX config
- POST /streaming/mediamtx/start - Start the local MediaMTX install with a generated config

URLs are always returned masked unless a preview or camera stream request
explicitly asks for the password. Generated config content is never returned.
"""
import logging
from typing import Union

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.async_utils import OperationTimeoutError
from app.core.config import settings
from app.core.validators import is_safe_host, validate_config_sources, validate_deploy_request
from app.schemas.streaming import (
    CameraStreamRequest,
    CameraStreamResponse,
    MediaMtxDeployRequest,
    MediaMtxDeployResponse,
    MediaMtxStartRequest,
    MediaMtxStartResponse,
    NvrHealthRequest,
    NvrHealthResponse,
    OnvifRequest,
    OnvifResponse,
    RtspDetectResponse,
    RtspPreviewRequest,
    RtspPreviewResponse,
    RtspTestResponse,
    RtspUrlRequest,
    StreamInfoResponse,
)
from app.services.command_runner import CommandError, CommandRunner, get_command_runner
from app.services.mediamtx_config import (
    build_mediamtx_config,
    build_webrtc_url,
    get_webrtc_path,
    resolve_camera_rtsp_url,
)
from app.services.mediamtx_deploy import DeployError, deploy_mediamtx_config
from app.services.mediamtx_runner import start_mediamtx
from app.services.nvr_health import check_nvr_health, probe_tcp
from app.services.onvif_client import ONVIFClient, OnvifAuthError, OnvifError, get_onvif_client
from app.services.rtsp_url import (
    InvalidRtspUrlError,
    build_rtsp_url,
    detect_profile_from_url,
    detect_vendor_from_url,
    mask_rtsp_url,
    normalize_vendor,
    parse_rtsp_url,
)
from app.services.stream_info import detect_codec_from_profile, get_recommended_player, probe_stream_info

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/streaming", tags=["streaming"])


def _require_safe_host(host: str) -> None:
    if not is_safe_host(host):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid host")


def _parse_or_400(rtsp_url: str):
    try:
        return parse_rtsp_url(rtsp_url)
    except InvalidRtspUrlError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/rtsp/preview", response_model=RtspPreviewResponse)
async def preview_rtsp_url(request: RtspPreviewRequest) -> RtspPreviewResponse:
    """
    Build the RTSP URL an NVR channel would be published from.

    The password is masked unless ``include_password`` is set.
    """
    _require_safe_host(request.nvr.host)

    vendor = normalize_vendor(request.nvr.vendor)
    url = build_rtsp_url(request.nvr, request.channel_no, request.stream_profile, vendor)

    return RtspPreviewResponse(
        rtsp_url=url if request.include_password else mask_rtsp_url(url),
        vendor=vendor,
        profile=request.stream_profile,
        host=request.nvr.host,
        port=request.nvr.rtsp_port,
    )


@router.post("/rtsp/detect", response_model=RtspDetectResponse)
async def detect_rtsp_url(request: RtspUrlRequest) -> RtspDetectResponse:
    """
    Detect the vendor layout and stream profile of an externally supplied URL.

    Raises:
        HTTPException: 400 if the URL is not a valid rtsp:// URL
    """
    _parse_or_400(request.rtsp_url)
    return RtspDetectResponse(
        rtsp_url=mask_rtsp_url(request.rtsp_url),
        vendor=detect_vendor_from_url(request.rtsp_url),
        profile=detect_profile_from_url(request.rtsp_url),
    )


@router.post("/rtsp/test", response_model=RtspTestResponse)
async def check_rtsp_connection(request: RtspUrlRequest) -> RtspTestResponse:
    """
    Check that the host/port of an RTSP URL accepts TCP connections.

    Only reachability is tested; no RTSP handshake is performed.
    """
    parsed = _parse_or_400(request.rtsp_url)
    probe = await probe_tcp(parsed.host, parsed.port, settings.NVR_HEALTH_TIMEOUT_MS)

    return RtspTestResponse(
        success=probe.ok,
        rtsp_url=mask_rtsp_url(request.rtsp_url),
        host=parsed.host,
        port=parsed.port,
        latency_ms=probe.latency_ms,
        error=probe.error,
    )


@router.post("/rtsp/info", response_model=StreamInfoResponse)
async def get_stream_info(
    request: RtspUrlRequest,
    runner: CommandRunner = Depends(get_command_runner),
) -> StreamInfoResponse:
    """Probe codec, resolution and frame rate with ffprobe and suggest a player"""
    _parse_or_400(request.rtsp_url)
    info = await probe_stream_info(request.rtsp_url, settings.FFPROBE_TIMEOUT_SEC, runner)
    return StreamInfoResponse(
        rtsp_url=mask_rtsp_url(request.rtsp_url),
        info=info,
        recommended_player=get_recommended_player(info.is_h265),
    )


@router.post("/nvr/health", response_model=NvrHealthResponse)
async def nvr_health(request: NvrHealthRequest) -> NvrHealthResponse:
    """Probe the HTTP, ONVIF and RTSP ports of an NVR concurrently"""
    _require_safe_host(request.host)

    health = await check_nvr_health(
        request.host,
        request.http_port,
        request.onvif_port,
        request.rtsp_port,
        settings.NVR_HEALTH_TIMEOUT_MS,
    )
    return NvrHealthResponse(health=health, status=health.status, error_summary=health.error_summary)


@router.post("/nvr/onvif", response_model=OnvifResponse)
async def nvr_onvif(
    request: OnvifRequest,
    client: ONVIFClient = Depends(get_onvif_client),
) -> OnvifResponse:
    """
    Fetch device identity and stream profiles over ONVIF.

    Raises:
        HTTPException: 401 if credentials are rejected, 504 on timeout,
            502 for any other device failure
    """
    _require_safe_host(request.host)

    try:
        device_info = await client.fetch_device_info(
            request.host, request.onvif_port, request.username, request.password
        )
        result = await client.fetch_profiles(
            request.host, request.onvif_port, request.username, request.password
        )
    except OperationTimeoutError as e:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(e))
    except OnvifAuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except OnvifError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    streams = [
        stream.model_copy(update={"uri": mask_rtsp_url(stream.uri) if stream.uri else None})
        for stream in result.streams
    ]
    return OnvifResponse(device_info=device_info, streams=streams)


@router.post("/cameras/stream", response_model=CameraStreamResponse)
async def camera_stream(request: CameraStreamRequest) -> CameraStreamResponse:
    """
    Resolve how a camera is played back.

    Returns the MediaMTX path key, its WHEP URL (when WEBRTC_BASE_URL is
    set), the effective RTSP source with its provenance, and the codec and
    player suggested by the stream profile. The RTSP URL is masked unless
    ``include_password`` is set.
    """
    camera = request.camera
    if request.nvr is not None:
        _require_safe_host(request.nvr.host)

    rtsp_url, rtsp_source = resolve_camera_rtsp_url(camera, request.nvr)
    if rtsp_url and not request.include_password:
        rtsp_url = mask_rtsp_url(rtsp_url)

    webrtc_path = get_webrtc_path(camera.school_id, camera.id, camera.external_id)
    codec = detect_codec_from_profile(camera.stream_profile)

    return CameraStreamResponse(
        camera_id=camera.id,
        webrtc_path=webrtc_path,
        webrtc_url=build_webrtc_url(webrtc_path, settings.webrtc_base_url),
        rtsp_url=rtsp_url,
        rtsp_source=rtsp_source,
        stream_profile=camera.stream_profile,
        codec=codec.codec,
        is_h265=codec.is_h265,
        recommended_player=get_recommended_player(codec.is_h265),
    )


def _render_config(request: Union[MediaMtxDeployRequest, MediaMtxStartRequest]) -> str:
    return build_mediamtx_config(
        request.cameras,
        {nvr.id: nvr for nvr in request.nvrs if nvr.id},
        rtsp_address=settings.MEDIAMTX_RTSP_ADDRESS,
        hls_address=settings.MEDIAMTX_HLS_ADDRESS,
        webrtc_address=settings.MEDIAMTX_WEBRTC_ADDRESS,
        source_close_after=settings.MEDIAMTX_SOURCE_CLOSE_AFTER,
    )


def _require_deploy_enabled() -> None:
    if not settings.MEDIAMTX_DEPLOY_ENABLED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="MediaMTX deploy is disabled")


@router.post("/mediamtx/deploy", response_model=MediaMtxDeployResponse)
async def deploy_mediamtx(
    request: MediaMtxDeployRequest,
    runner: CommandRunner = Depends(get_command_runner),
) -> MediaMtxDeployResponse:
    """
    Generate a MediaMTX config for the given cameras and deploy it.

    Disabled unless MEDIAMTX_DEPLOY_ENABLED is set. Restart commands are
    additionally gated by MEDIAMTX_DEPLOY_ALLOW_RESTART_COMMANDS.

    Raises:
        HTTPException: 403 if deploy is disabled, 400 for invalid input or a
            local path that cannot be written, 502 if a deploy command fails
    """
    _require_deploy_enabled()

    # InputValidationError is rendered as 400 by the app-level handler
    validate_deploy_request(
        request.target,
        allow_restart_commands=settings.MEDIAMTX_DEPLOY_ALLOW_RESTART_COMMANDS,
    )
    validate_config_sources(request.cameras, request.nvrs)

    content = _render_config(request)

    try:
        result = await deploy_mediamtx_config(content, request.target, runner)
    except DeployError as e:
        # includes DeployWriteError for an unwritable local path
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except CommandError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return MediaMtxDeployResponse(result=result)


@router.post("/mediamtx/start", response_model=MediaMtxStartResponse)
async def start_local_mediamtx(request: MediaMtxStartRequest) -> MediaMtxStartResponse:
    """
    Write mediamtx.autogen.yml into MEDIAMTX_DIR and launch MediaMTX from there.

    Shares the MEDIAMTX_DEPLOY_ENABLED gate with deploy. ``started`` is False
    when MEDIAMTX_DIR is unset, the binary is missing or it fails to spawn.
    """
    _require_deploy_enabled()
    validate_config_sources(request.cameras, request.nvrs)

    started = await start_mediamtx(settings.MEDIAMTX_DIR, lambda: _render_config(request))
    return MediaMtxStartResponse(started=started)
