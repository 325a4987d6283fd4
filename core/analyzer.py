"""
Camera analyzer: the capture -> analyze -> render pipeline for one camera.

Exposes what a UI needs: capture_and_analyze(), the latest `result`, a `busy`
flag, and subscribe() for change notification.
"""
from __future__ import annotations
import logging
from typing import Callable, List, Optional

import numpy as np

from core.analysis import AnalysisClient, RequestTracker
from core.capture import capture_frame
from core.config import Settings
from core.errors import NotReady
from core.models import AnalysisResult
from core.stream import CameraSession, StreamManager, StreamState
from core.visual import render_overlay, style_from_settings

logger = logging.getLogger(__name__)

Listener = Callable[["CameraAnalyzer"], None]


class CameraAnalyzer:
    def __init__(self, settings: Settings,
                 camera_index: Optional[int] = None,
                 stream: Optional[StreamManager] = None,
                 client: Optional[AnalysisClient] = None):
        self.s = settings
        self.stream = stream or StreamManager(settings, camera_index=camera_index)
        self.client = client or AnalysisClient(settings)
        self.style = style_from_settings(settings)
        self._requests = RequestTracker()
        self._listeners: List[Listener] = []
        self.result: Optional[AnalysisResult] = None
        self.overlay_result: Optional[AnalysisResult] = None

    # ---- reactive state ----
    @property
    def surface(self):
        return self.stream.surface

    @property
    def busy(self) -> bool:
        return self._requests.busy

    @property
    def can_capture(self) -> bool:
        return self.stream.state == StreamState.GRANTED and self.surface.has_frame and not self.busy

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("[analyzer] listener failed")

    def _apply(self, result: AnalysisResult) -> None:
        # a failed analysis keeps the last good overlay on screen
        self.result = result
        if result.ok:
            self.overlay_result = result

    # ---- lifecycle ----
    async def start(self) -> CameraSession:
        try:
            session = await self.stream.acquire()
        finally:
            self._notify()
        await self.stream.wait_until_ready()
        self._notify()
        return session

    async def close(self) -> None:
        self.stream.release()
        await self.client.aclose()
        self._notify()

    # ---- pipeline ----
    async def capture_and_analyze(self) -> AnalysisResult:
        """Snapshot the current frame, analyze it and apply the result if still current.

        Raises NotReady if the camera isn't granted or never produced a frame.
        """
        if self.stream.state != StreamState.GRANTED:
            raise NotReady()
        if not self.surface.has_frame:
            await self.stream.wait_until_ready()

        frame = capture_frame(self.stream.session, self.surface,
                              self.s.CAPTURE_MIME_TYPE, self.s.CAPTURE_QUALITY)
        request_id = self._requests.issue()
        logger.info(f"[analyzer] request id={request_id} frame={frame.width}x{frame.height}")
        self._notify()

        result: Optional[AnalysisResult] = None
        try:
            result = await self.client.analyze(frame)
        finally:
            current = self._requests.complete(request_id)
            if current and result is not None:
                self._apply(result)
            if current:
                self._notify()
        return result

    def render_overlay(self, display_size=None, canvas: Optional[np.ndarray] = None) -> Optional[np.ndarray]:
        """Paint the last good result for the displayed size; None once the stream is torn down."""
        if self.stream.state != StreamState.GRANTED:
            return None
        size = display_size or self.surface.displayed_size()
        return render_overlay(canvas, size, self.overlay_result, self.style)
