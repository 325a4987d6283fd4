"""
Camera and capture error types.
"""
from __future__ import annotations


class CameraError(RuntimeError):
    """Camera is unusable; blocks the feature until the user re-triggers acquisition."""
    title = "Camera Unavailable"
    detail = "No usable camera was found. Connect a camera and try again."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.detail)


class PermissionDenied(CameraError):
    title = "Camera Access Denied"
    detail = "Please enable camera permissions in your system settings to use this feature."


class DeviceUnavailable(CameraError):
    title = "Camera Not Found"
    detail = "No camera device could be opened. Check that it is connected and not in use."


class NotReady(RuntimeError):
    """Capture attempted before the stream is granted or has produced a frame."""
    title = "Cannot Capture Frame"
    detail = "Camera not ready or permission denied."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.detail)
