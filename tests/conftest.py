import json

import httpx
import numpy as np
import pytest

import core.stream as stream_mod
from core.analysis import AnalysisClient
from core.config import Settings


class DummyCap:
    """Stand-in for cv2.VideoCapture producing a fixed number of frames."""
    instances = []

    def __init__(self, idx=0, frames=1000, shape=(48, 64, 3), opened=True):
        self.idx = idx
        self.remaining = frames
        self.shape = shape
        self.opened = opened
        self.released = 0
        DummyCap.instances.append(self)

    def isOpened(self):
        return self.opened

    def read(self):
        if not self.opened or self.remaining <= 0:
            return False, None
        self.remaining -= 1
        frame = np.zeros(self.shape, dtype=np.uint8)
        frame[:, :, 1] = 120
        return True, frame

    def release(self):
        self.released += 1
        self.opened = False


@pytest.fixture
def settings():
    return Settings(ANALYSIS_ENDPOINT="http://analysis.test/frame", CAMERA_READY_TIMEOUT=0.2)


@pytest.fixture
def dummy_cap():
    DummyCap.instances = []
    return DummyCap


@pytest.fixture
def fake_camera(monkeypatch):
    """Patch cv2.VideoCapture and the device probe; returns the list of opened caps."""
    DummyCap.instances = []
    monkeypatch.setattr(stream_mod.cv2, "VideoCapture", lambda idx: DummyCap(idx))
    monkeypatch.setattr(stream_mod, "probe_device", lambda idx: None)
    return DummyCap.instances


@pytest.fixture
def make_client():
    """Build an AnalysisClient whose HTTP traffic goes to `handler(request) -> httpx.Response`."""
    def factory(settings, handler):
        transport = httpx.MockTransport(handler)
        return AnalysisClient(settings, client=httpx.AsyncClient(transport=transport))
    return factory


@pytest.fixture
def json_handler():
    """Handler factory answering every request with `payload`; request bodies land in `seen`."""
    def factory(payload, status=200, seen=None):
        def handler(request):
            if seen is not None:
                seen.append(json.loads(request.content))
            return httpx.Response(status, json=payload)
        return handler
    return factory


@pytest.fixture
def one_face_payload():
    return {
        "detections": [{
            "boundingBox": {"x": 0.1, "y": 0.1, "width": 0.3, "height": 0.3},
            "ageRangeEstimate": "20-25",
            "genderEstimate": "Female",
            "moodEstimate": "Happy",
            "behaviorEstimate": "Smiling",
        }],
        "summaryText": "Detected 1 face.",
    }
