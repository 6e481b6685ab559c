"""
NVR Health Prober

TCP reachability checks for the HTTP, ONVIF and RTSP ports of an NVR.
A probe only opens and closes a connection; no protocol is spoken.
"""
import asyncio
import logging
import time
from typing import Optional

from app.schemas.streaming import HealthStatus, NvrHealthResult, PortProbeResult

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_MS = 3000


def _elapsed_ms(start: float) -> int:
    return max(0, int((time.monotonic() - start) * 1000))


async def probe_tcp(host: str, port: int, timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS) -> PortProbeResult:
    """
    Attempt a TCP connect and close it immediately.

    Never raises for network failures: refused connections, DNS errors, unencodable
    hostnames and timeouts are reported through ``ok=False`` and ``error``. Latency is
    recorded on success and failure alike.

    Args:
        host: Hostname or IP address
        port: TCP port
        timeout_ms: Connect budget in milliseconds

    Returns:
        PortProbeResult for the port
    """
    start = time.monotonic()
    writer: Optional[asyncio.StreamWriter] = None
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout_ms / 1000,
        )
        return PortProbeResult(port=port, ok=True, latency_ms=_elapsed_ms(start))
    except asyncio.TimeoutError:
        return PortProbeResult(port=port, ok=False, latency_ms=_elapsed_ms(start), error="timeout")
    except (OSError, ValueError) as e:
        # ValueError covers hostnames the IDNA codec rejects (empty or over-long labels)
        return PortProbeResult(
            port=port,
            ok=False,
            latency_ms=_elapsed_ms(start),
            error=str(e) or type(e).__name__,
        )
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass


async def check_nvr_health(
    host: str,
    http_port: int = 80,
    onvif_port: int = 80,
    rtsp_port: int = 554,
    timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS,
) -> NvrHealthResult:
    """
    Probe the three NVR ports concurrently.

    The aggregate verdict is available as ``result.status``: ok when all three
    ports accept, offline when none do, partial otherwise.
    """
    http, onvif, rtsp = await asyncio.gather(
        probe_tcp(host, http_port, timeout_ms),
        probe_tcp(host, onvif_port, timeout_ms),
        probe_tcp(host, rtsp_port, timeout_ms),
    )
    result = NvrHealthResult(host=host, http=http, onvif=onvif, rtsp=rtsp)

    status = result.status
    log = logger.info if status == HealthStatus.OK else logger.warning
    log(
        f"NVR health {host}: {status.value}",
        extra={
            "event_type": "nvr_health_checked",
            "host": host,
            "status": status.value,
            "http_ok": http.ok,
            "onvif_ok": onvif.ok,
            "rtsp_ok": rtsp.ok,
        },
    )
    return result
