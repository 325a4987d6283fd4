"""
Camera stream lifecycle.

StreamManager owns the physical camera (a cv2.VideoCapture) and binds it to a
single VideoSurface. State machine:

    uninitialized -> requesting -> granted | denied
    granted -> released

A denied stream stays denied until the caller runs acquire() again; nothing
here polls or retries on its own.
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys
from enum import Enum
from typing import Literal, Optional, Tuple

import cv2
import numpy as np

from core.config import Settings
from core.errors import CameraError, DeviceUnavailable, NotReady, PermissionDenied

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    UNINITIALIZED = "uninitialized"
    REQUESTING = "requesting"
    GRANTED = "granted"
    DENIED = "denied"
    RELEASED = "released"


class CameraSession:
    """Exclusive ownership of one opened camera track."""
    def __init__(self, camera_index: int):
        self.camera_index = camera_index
        self.permission_state: Literal["unknown", "granted", "denied"] = "unknown"
        self.track: Optional[cv2.VideoCapture] = None

    @property
    def live(self) -> bool:
        return self.permission_state == "granted" and self.track is not None


class VideoSurface:
    """The surface a live stream renders into.

    intrinsic_size comes from the frames themselves; display_size is whatever the
    viewer currently shows (window or browser element) and may differ.
    """
    def __init__(self, display_size: Optional[Tuple[int, int]] = None):
        self._frame: Optional[np.ndarray] = None
        self.display_size = display_size

    def present(self, frame: np.ndarray) -> None:
        self._frame = frame

    def detach(self) -> None:
        self._frame = None

    @property
    def frame(self) -> Optional[np.ndarray]:
        return self._frame

    @property
    def has_frame(self) -> bool:
        w, h = self.intrinsic_size
        return w > 0 and h > 0

    @property
    def intrinsic_size(self) -> Tuple[int, int]:
        if self._frame is None or self._frame.ndim < 2:
            return 0, 0
        h, w = self._frame.shape[:2]
        return int(w), int(h)

    def displayed_size(self) -> Tuple[int, int]:
        if self.display_size and self.display_size[0] > 0 and self.display_size[1] > 0:
            return self.display_size
        return self.intrinsic_size


def probe_device(camera_index: int) -> None:
    """Raise early when the OS tells us the device is missing or off-limits.

    Only Linux exposes a device node we can inspect; elsewhere opening the
    capture is the only signal.
    """
    if not sys.platform.startswith("linux"):
        return
    node = f"/dev/video{camera_index}"
    if not os.path.exists(node):
        raise DeviceUnavailable(f"{node} does not exist")
    if not os.access(node, os.R_OK | os.W_OK):
        raise PermissionDenied(f"no read/write access to {node}")


class StreamManager:
    def __init__(self, settings: Settings, camera_index: Optional[int] = None,
                 surface: Optional[VideoSurface] = None):
        self.s = settings
        self.camera_index = settings.CAMERA_INDEX if camera_index is None else camera_index
        self.surface = surface or VideoSurface()
        self.state = StreamState.UNINITIALIZED
        self.session: Optional[CameraSession] = None
        self.failure: Optional[CameraError] = None
        # concurrent acquire() calls share one open
        self._acquiring = asyncio.Lock()

    def _open(self):
        probe_device(self.camera_index)
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(f"Could not open camera index {self.camera_index}")
        return cap

    async def acquire(self) -> CameraSession:
        async with self._acquiring:
            if self.state == StreamState.GRANTED and self.session is not None and self.session.live:
                return self.session

            self.state = StreamState.REQUESTING
            self.failure = None
            session = CameraSession(self.camera_index)
            self.session = session
            logger.debug(f"[stream] requesting camera index={self.camera_index}")

            try:
                cap = await asyncio.to_thread(self._open)
            except CameraError as e:
                session.permission_state = "denied"
                self.state = StreamState.DENIED
                self.failure = e
                logger.warning(f"[stream] camera acquisition failed: {e}")
                raise

            session.track = cap
            session.permission_state = "granted"
            self.surface.detach()
            self.state = StreamState.GRANTED
            logger.info(f"[stream] camera index={self.camera_index} granted")
            return session

    def release(self, session: Optional[CameraSession] = None) -> None:
        """Stop the camera track. Safe to call repeatedly or on a dead session."""
        session = session or self.session
        if session is None:
            return
        track, session.track = session.track, None
        if track is not None:
            track.release()
            logger.info(f"[stream] camera index={session.camera_index} released")
        if session is self.session:
            self.surface.detach()
            if self.state == StreamState.GRANTED:
                self.state = StreamState.RELEASED

    def _read(self) -> Optional[np.ndarray]:
        session = self.session
        if self.state != StreamState.GRANTED or session is None or not session.live:
            return None
        ok, frame = session.track.read()
        return frame if ok else None

    def _present(self, frame: Optional[np.ndarray]) -> bool:
        if frame is None or self.state != StreamState.GRANTED:
            return False
        self.surface.present(frame)
        return True

    def pump(self) -> bool:
        """Read one frame from the track into the surface (blocks on the read)."""
        return self._present(self._read())

    async def pump_async(self) -> bool:
        """pump() with the camera read moved off the event loop."""
        return self._present(await asyncio.to_thread(self._read))

    async def wait_until_ready(self, timeout: Optional[float] = None, poll: float = 0.01) -> None:
        timeout = self.s.CAMERA_READY_TIMEOUT if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)
        while True:
            if self.state != StreamState.GRANTED:
                raise NotReady()
            if self.surface.has_frame or await self.pump_async():
                return
            if loop.time() >= deadline:
                raise NotReady(f"Camera produced no frame within {timeout:.1f}s")
            await asyncio.sleep(poll)

    async def stream_frames(self, interval: Optional[float] = None) -> None:
        """Keep the surface fed until the stream is released."""
        interval = (1.0 / max(1.0, self.s.CAMERA_FPS)) if interval is None else interval
        while self.state == StreamState.GRANTED:
            await self.pump_async()
            await asyncio.sleep(interval)
        logger.debug("[stream] frame pump stopped")
