# core/live.py
"""
Live camera preview with on-demand frame analysis.

run_live_overlay opens an OpenCV window over the camera stream and drives
everything from one asyncio loop:
- frames are pumped from the camera into the VideoSurface every tick
- the window's displayed size is observed; a change re-projects the last result
- a new analysis result re-renders the overlay canvas
- 'c' or SPACE captures the current frame and sends it for analysis
- 'q' quits (and releases the camera)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from core.analyzer import CameraAnalyzer
from core.config import Settings
from core.errors import CameraError, NotReady
from core.visual import (
    ResizeObserver,
    composite,
    draw_blocking_message,
    draw_status,
    summary_lines,
)

logger = logging.getLogger(__name__)

WINDOW_NAME = "Camera Analyzer (c: capture, q: quit)"
TRIGGER_KEYS = (ord("c"), ord(" "))
QUIT_KEY = ord("q")
BLOCKING_SIZE = (640, 360)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _window_size(name: str, fallback: Tuple[int, int]) -> Tuple[int, int]:
    """Displayed image area of the window, or `fallback` when the backend can't tell."""
    try:
        _, _, w, h = cv2.getWindowImageRect(name)
    except cv2.error:
        return fallback
    if w <= 0 or h <= 0:
        return fallback
    return int(w), int(h)


def _status_lines(analyzer: CameraAnalyzer, notice: Optional[str]) -> Tuple[list, Tuple[int, int, int]]:
    if analyzer.busy:
        return ["ANALYZING FRAME..."], (0, 215, 255)
    if notice:
        return [notice], (0, 165, 255)
    result = analyzer.result
    if result is not None and not result.ok:
        return summary_lines(result), (80, 80, 255)
    return summary_lines(result)[:4], (255, 255, 255)


def _show_blocking(err: CameraError) -> None:
    logger.error(f"[live] camera unusable: {err}")
    view = draw_blocking_message(BLOCKING_SIZE, err.title, err.detail)
    while True:
        cv2.imshow(WINDOW_NAME, view)
        if (cv2.waitKey(50) & 0xFF) == QUIT_KEY:
            break


async def _trigger(analyzer: CameraAnalyzer) -> None:
    try:
        result = await analyzer.capture_and_analyze()
    except NotReady as e:
        logger.warning(f"[live] capture skipped: {e}")
        return
    except Exception:
        logger.exception("[live] analysis task failed")
        return
    if result is not None and not result.ok:
        logger.warning(f"[live] analysis failed: {result.error_message}")


# -----------------------------------------------------------------------------
# Main loop
# -----------------------------------------------------------------------------
async def live_loop(settings: Settings, camera_index: Optional[int] = None,
                    analyzer: Optional[CameraAnalyzer] = None) -> None:
    analyzer = analyzer or CameraAnalyzer(settings, camera_index=camera_index)
    cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_NORMAL)
    task: Optional[asyncio.Task] = None

    try:
        try:
            await analyzer.start()
        except CameraError as e:
            _show_blocking(e)
            return
        except NotReady as e:
            _show_blocking(CameraError(str(e)))
            return

        canvas: Optional[np.ndarray] = None
        dirty = True
        notice: Optional[str] = None

        def _mark_dirty(*_):
            nonlocal dirty
            dirty = True

        def _on_resize(size: Tuple[int, int]) -> None:
            analyzer.surface.display_size = size
            logger.debug(f"[live] display size -> {size[0]}x{size[1]}")
            _mark_dirty()

        observer = ResizeObserver(
            lambda: _window_size(WINDOW_NAME, analyzer.surface.intrinsic_size), _on_resize
        )
        unsubscribe = analyzer.subscribe(_mark_dirty)

        while True:
            if not analyzer.stream.pump():
                logger.info("[live] camera stopped producing frames")
                break
            observer.poll()
            if dirty:
                canvas = analyzer.render_overlay(observer.size, canvas)
                dirty = False

            frame = analyzer.surface.frame
            view = composite(frame, canvas) if canvas is not None else frame.copy()
            lines, color = _status_lines(analyzer, notice)
            cv2.imshow(WINDOW_NAME, draw_status(view, lines, color))

            key = cv2.waitKey(1) & 0xFF
            if key == QUIT_KEY:
                break
            if key in TRIGGER_KEYS:
                if analyzer.can_capture:
                    notice = None
                    task = asyncio.create_task(_trigger(analyzer))
                else:
                    notice = "Cannot capture yet: analysis in progress" if analyzer.busy \
                        else "Cannot Capture Frame: Camera not ready."
            await asyncio.sleep(0)

        unsubscribe()
    finally:
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await analyzer.close()
        cv2.destroyAllWindows()


def run_live_overlay(settings: Settings, camera_index: Optional[int] = None) -> None:
    """
    Open the camera in a preview window and analyze frames on demand.

    Press 'c' (or SPACE) to capture and analyze the current frame, 'q' to quit.
    Boxes and labels from the latest successful analysis follow the window size.
    """
    asyncio.run(live_loop(settings, camera_index))
