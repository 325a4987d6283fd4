"""
REST endpoints for the camera analyzer.
"""
import asyncio
import logging

import cv2
from fastapi import APIRouter, HTTPException, Query, Response

from core.analyzer import CameraAnalyzer
from core.config import Settings
from core.errors import DeviceUnavailable, NotReady, PermissionDenied
from core.stream import StreamState
from core.visual import summary_lines

router = APIRouter(prefix="/camera")
settings = Settings()
logger = logging.getLogger(__name__)

camera = {"analyzer": None, "pump": None}


def get_analyzer() -> CameraAnalyzer:
    if camera["analyzer"] is None:
        camera["analyzer"] = CameraAnalyzer(settings)
    return camera["analyzer"]


async def _stop_pump() -> None:
    pump, camera["pump"] = camera["pump"], None
    if pump is not None and not pump.done():
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass


async def shutdown_camera() -> None:
    """Release the camera, stop the frame pump and close the analysis client."""
    analyzer, camera["analyzer"] = camera["analyzer"], None
    if analyzer is not None:
        analyzer.stream.release()
    await _stop_pump()
    if analyzer is not None:
        await analyzer.client.aclose()


@router.post("/start")
async def camera_start():
    """
    Acquire the camera and start feeding frames to the video surface.

    Returns:
        dict: {"status": "started" | "already_running", "state": ...}
    """
    analyzer = get_analyzer()
    if analyzer.stream.state == StreamState.GRANTED:
        return {"status": "already_running", "state": analyzer.stream.state.value}

    logger.debug(f"[api] /camera/start index={analyzer.stream.camera_index}")
    try:
        await analyzer.stream.acquire()
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=f"{e.title}: {e.detail}")
    except DeviceUnavailable as e:
        raise HTTPException(status_code=503, detail=f"{e.title}: {e.detail}")

    pump = camera["pump"]
    if pump is not None and not pump.done():
        # an overlapping start already granted the camera and owns the pump
        return {"status": "already_running", "state": analyzer.stream.state.value}
    camera["pump"] = asyncio.create_task(analyzer.stream.stream_frames())
    return {"status": "started", "state": analyzer.stream.state.value}


@router.post("/stop")
async def camera_stop():
    analyzer = camera["analyzer"]
    if analyzer is None or analyzer.stream.state != StreamState.GRANTED:
        return {"status": "not_running"}
    logger.debug("[api] /camera/stop")
    analyzer.stream.release()
    await _stop_pump()
    return {"status": "stopped"}


@router.get("/status")
async def camera_status():
    analyzer = camera["analyzer"]
    if analyzer is None:
        return {"state": StreamState.UNINITIALIZED.value, "busy": False,
                "can_capture": False, "error": None, "result": None, "summary": []}
    failure = analyzer.stream.failure
    return {
        "state": analyzer.stream.state.value,
        "busy": analyzer.busy,
        "can_capture": analyzer.can_capture,
        "error": f"{failure.title}: {failure.detail}" if failure else None,
        "result": analyzer.result.model_dump() if analyzer.result else None,
        "summary": summary_lines(analyzer.result),
    }


@router.post("/analyze")
async def camera_analyze():
    """
    Capture the current frame and run it through the analysis service.

    Analysis failures come back as a normal payload with `error_message` set;
    only a camera that isn't ready is an HTTP error (409).
    """
    analyzer = camera["analyzer"]
    if analyzer is None:
        raise HTTPException(status_code=409, detail=f"{NotReady.title}: {NotReady.detail}")
    try:
        result = await analyzer.capture_and_analyze()
    except NotReady as e:
        logger.warning(f"[api] /camera/analyze not ready: {e}")
        raise HTTPException(status_code=409, detail=f"{NotReady.title}: {e}")
    return result.model_dump()


@router.get("/overlay")
async def camera_overlay(width: int | None = Query(None, ge=1, le=8192),
                         height: int | None = Query(None, ge=1, le=8192)):
    """
    Render the overlay for the caller's displayed video size as a transparent PNG.

    Args:
        width: displayed width of the video element (defaults to intrinsic)
        height: displayed height of the video element (defaults to intrinsic)
    """
    analyzer = camera["analyzer"]
    if analyzer is None or analyzer.stream.state != StreamState.GRANTED:
        raise HTTPException(status_code=409, detail="Camera stream is not running.")
    iw, ih = analyzer.surface.intrinsic_size
    size = (width or iw, height or ih)
    if size[0] <= 0 or size[1] <= 0:
        raise HTTPException(status_code=409, detail="Video has not produced a frame yet.")

    canvas = analyzer.render_overlay(size)
    ok, png = cv2.imencode(".png", canvas)
    if not ok:
        raise HTTPException(status_code=500, detail="Overlay encoding failed")
    return Response(content=png.tobytes(), media_type="image/png")
