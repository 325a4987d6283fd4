"""
Configuration for the camera capture and overlay pipeline.
"""
from pydantic import BaseModel
import logging
import os

SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")


class Settings(BaseModel):
    """
    Runtime settings with environment-variable overrides.
    """
    CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
    CAMERA_READY_TIMEOUT: float = float(os.getenv("CAMERA_READY_TIMEOUT", "5"))
    CAMERA_FPS: float = float(os.getenv("CAMERA_FPS", "30"))

    CAPTURE_MIME_TYPE: str = os.getenv("CAPTURE_MIME_TYPE", "image/jpeg")
    CAPTURE_QUALITY: int = int(os.getenv("CAPTURE_QUALITY", "85"))

    ANALYSIS_ENDPOINT: str = os.getenv("ANALYSIS_ENDPOINT", "http://localhost:8000/analyze-camera-frame")
    ANALYSIS_API_KEY: str | None = os.getenv("ANALYSIS_API_KEY") or None
    ANALYSIS_TIMEOUT: float = float(os.getenv("ANALYSIS_TIMEOUT", "30"))

    OVERLAY_FONT_SCALE: float = float(os.getenv("OVERLAY_FONT_SCALE", "0.5"))
    OVERLAY_PADDING: int = int(os.getenv("OVERLAY_PADDING", "4"))
    OVERLAY_LINE_SPACING: int = int(os.getenv("OVERLAY_LINE_SPACING", "4"))
    OVERLAY_LABEL_ALPHA: float = float(os.getenv("OVERLAY_LABEL_ALPHA", "0.6"))
    OVERLAY_BOX_THICKNESS: int = int(os.getenv("OVERLAY_BOX_THICKNESS", "2"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    def __init__(self, **data):
        super().__init__(**data)
        # Normalize MIME type: lower-case, fall back to JPEG for anything cv2 can't encode
        mime = (self.CAPTURE_MIME_TYPE or "image/jpeg").strip().lower()
        if mime == "image/jpg":
            mime = "image/jpeg"
        if mime not in SUPPORTED_MIME_TYPES:
            mime = "image/jpeg"
        object.__setattr__(self, "CAPTURE_MIME_TYPE", mime)
        object.__setattr__(self, "CAPTURE_QUALITY", max(1, min(100, int(self.CAPTURE_QUALITY))))
        object.__setattr__(self, "OVERLAY_LABEL_ALPHA", max(0.0, min(1.0, float(self.OVERLAY_LABEL_ALPHA))))
        object.__setattr__(self, "LOG_LEVEL", (self.LOG_LEVEL or "INFO").strip().upper())

    @property
    def log_level(self) -> int:
        """Numeric logging level for LOG_LEVEL; unknown names fall back to INFO."""
        level = getattr(logging, self.LOG_LEVEL, None)
        return level if isinstance(level, int) else logging.INFO
