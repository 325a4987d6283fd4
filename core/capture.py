"""Single-frame snapshot from a live stream, encoded for transport."""
from __future__ import annotations
import logging
from typing import Optional

import cv2
import numpy as np

from core.errors import NotReady
from core.models import CapturedFrame
from core.stream import CameraSession, VideoSurface

logger = logging.getLogger(__name__)

_ENCODERS = {
    "image/jpeg": (".jpg", cv2.IMWRITE_JPEG_QUALITY),
    "image/webp": (".webp", cv2.IMWRITE_WEBP_QUALITY),
    "image/png": (".png", None),
}


def encode_image(buffer: np.ndarray, mime_type: str = "image/jpeg", quality: int = 85) -> bytes:
    ext, quality_flag = _ENCODERS.get(mime_type, _ENCODERS["image/jpeg"])
    params = [int(quality_flag), int(quality)] if quality_flag is not None else []
    ok, encoded = cv2.imencode(ext, buffer, params)
    if not ok:
        raise RuntimeError(f"Could not encode frame as {mime_type}")
    return encoded.tobytes()


def capture_frame(session: Optional[CameraSession],
                  surface: VideoSurface,
                  mime_type: str = "image/jpeg",
                  quality: int = 85) -> CapturedFrame:
    """Snapshot the surface's current frame at its intrinsic resolution.

    Raises NotReady if the session isn't granted or no frame has arrived yet.
    The copy buffer lives only for the duration of the encode.
    """
    if session is None or not session.live:
        raise NotReady()
    w, h = surface.intrinsic_size
    if w == 0 or h == 0:
        raise NotReady("Video has not produced a frame yet.")

    src = surface.frame
    if src.ndim == 2:
        src = cv2.cvtColor(src, cv2.COLOR_GRAY2BGR)
    elif src.shape[2] == 4:
        src = cv2.cvtColor(src, cv2.COLOR_BGRA2BGR)
    buffer = np.empty((h, w, 3), dtype=np.uint8)
    np.copyto(buffer, src, casting="unsafe")

    mime = mime_type if mime_type in _ENCODERS else "image/jpeg"
    payload = encode_image(buffer, mime, quality)
    del buffer
    logger.debug(f"[capture] {w}x{h} frame -> {len(payload)} bytes {mime}")
    return CapturedFrame(mime_type=mime, payload=payload, width=w, height=h)
