"""
Stream Info Service

Inspects an RTSP stream with ffprobe (codec, resolution, frame rate,
bitrate) and recommends a browser player for it.

ffprobe must be installed and on PATH. Every failure is reported through
``StreamInfo.error``; nothing here raises.
"""
import json
import logging
import re
from typing import Any, Optional

from app.schemas.streaming import StreamInfo, StreamProfile
from app.services.command_runner import CommandError, CommandRunner, CommandTimeoutError, SubprocessCommandRunner
from app.services.rtsp_url import mask_rtsp_url

logger = logging.getLogger(__name__)

DEFAULT_FFPROBE_TIMEOUT_SEC = 5

# Grace period on top of ffprobe's own socket timeout before the process is killed
KILL_GRACE_SEC = 2

_FRACTION = re.compile(r'^(\d+(?:\.\d+)?)\s*/\s*(\d+(?:\.\d+)?)$')


def parse_ffprobe_fps(value: Any) -> Optional[float]:
    """
    Parse ffprobe's r_frame_rate ("25/1", "30000/1001" or a plain number).

    Returns None for anything unparseable, zero or negative.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None

    match = _FRACTION.match(text)
    if match:
        num, den = float(match.group(1)), float(match.group(2))
        if den == 0:
            return None
        fps = num / den
        return fps if fps > 0 else None

    try:
        fps = float(text)
    except ValueError:
        return None
    return fps if fps > 0 else None


def _parse_ffprobe_output(output: str) -> StreamInfo:
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        return StreamInfo(error="Failed to parse FFprobe output")
    if not isinstance(data, dict):
        return StreamInfo(error="Failed to parse FFprobe output")

    video = next(
        (s for s in data.get("streams") or [] if s.get("codec_type") == "video"),
        None,
    )
    if video is None:
        return StreamInfo(error="No video stream found")

    codec_name = video.get("codec_name")
    codec = (codec_name or "").lower()
    bit_rate = video.get("bit_rate")

    return StreamInfo(
        codec=codec_name,
        width=video.get("width"),
        height=video.get("height"),
        fps=parse_ffprobe_fps(video.get("r_frame_rate")),
        bitrate=int(bit_rate) if bit_rate and str(bit_rate).isdigit() else None,
        is_h265="hevc" in codec or "h265" in codec,
        is_h264="h264" in codec or "avc" in codec,
    )


async def probe_stream_info(
    rtsp_url: str,
    timeout_sec: int = DEFAULT_FFPROBE_TIMEOUT_SEC,
    runner: Optional[CommandRunner] = None,
) -> StreamInfo:
    """
    Run ffprobe against an RTSP URL over TCP transport.

    Args:
        rtsp_url: Stream URL, credentials included
        timeout_sec: ffprobe socket timeout; the process is killed shortly after
        runner: Command runner; defaults to real subprocesses

    Returns:
        StreamInfo for the first video stream, or one with ``error`` set
    """
    runner = runner or SubprocessCommandRunner()
    args = [
        "-v", "quiet",
        "-print_format", "json",
        "-show_streams",
        "-timeout", str(timeout_sec * 1_000_000),
        "-rtsp_transport", "tcp",
        rtsp_url,
    ]

    try:
        result = await runner.run("ffprobe", args, timeout=timeout_sec + KILL_GRACE_SEC)
    except CommandTimeoutError:
        info = StreamInfo(error="FFprobe timeout")
    except CommandError as e:
        info = StreamInfo(error=f"FFprobe not available: {e.stderr or e}")
    else:
        if result.exit_code != 0:
            info = StreamInfo(error=result.stderr.strip() or "FFprobe failed")
        else:
            info = _parse_ffprobe_output(result.stdout)

    if info.error:
        logger.warning(
            f"Stream probe failed for {mask_rtsp_url(rtsp_url)}: {info.error}",
            extra={"event_type": "stream_probe_failed"},
        )
    else:
        logger.info(
            f"Stream probe {mask_rtsp_url(rtsp_url)}: {info.codec} {info.width}x{info.height}",
            extra={"event_type": "stream_probe_completed", "codec": info.codec},
        )
    return info


def detect_codec_from_profile(profile: StreamProfile) -> StreamInfo:
    """Heuristic when probing is not possible: main streams are usually H.265, sub streams H.264"""
    if StreamProfile(profile) == StreamProfile.MAIN:
        return StreamInfo(codec="H.265 (HEVC)", is_h265=True, is_h264=False)
    return StreamInfo(codec="H.264 (AVC)", is_h265=False, is_h264=True)


def get_recommended_player(is_h265: bool) -> str:
    """H.265 streams are played through HLS, everything else through WebRTC"""
    return "hls" if is_h265 else "webrtc"
