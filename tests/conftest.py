# tests/conftest.py
import asyncio
import io
from typing import Any, List, Optional

import numpy as np
import pytest
from PIL import Image

from visage.models import AnalysisResult
from visage.schema import validate_analysis

SAMPLE_RESPONSE = {
    "shape": "Oval",
    "confidence": 0.87,
    "description": "Balanced proportions with a gently tapered chin.",
    "landmarks": [{"label": "chin_bottom", "x": 50, "y": 95}],
    "tips": {
        "hair": "Long waves or a blunt bob.",
        "glasses": "Wide frames that keep the balance.",
        "makeup": "Highlight the center of the face.",
    },
}

PNG_PAYLOAD = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=="


def jpeg_bytes(width: int = 640, height: int = 480, color=(200, 150, 120)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG")
    return buf.getvalue()


def png_bytes(width: int = 64, height: int = 48) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), (10, 20, 30, 255)).save(buf, format="PNG")
    return buf.getvalue()


def sample_result(**overrides) -> AnalysisResult:
    data = dict(SAMPLE_RESPONSE)
    data.update(overrides)
    return validate_analysis(data)


class FakeDevice:
    """Stands in for cv2.VideoCapture."""

    def __init__(self, frame: Optional[np.ndarray] = None, ok: bool = True):
        self.frame = frame if frame is not None else np.full((48, 64, 3), 128, dtype=np.uint8)
        self.ok = ok
        self.released = False

    def read(self):
        if not self.ok:
            return False, None
        return True, self.frame.copy()

    def release(self):
        self.released = True


class FakeGeminiClient:
    """
    Scripted client. Outcomes are popped in order; an Exception outcome is
    raised. When a gate (asyncio.Event) is set, the call waits for it.
    """

    def __init__(self, analysis: List[Any] = None, inspiration: List[Any] = None):
        self.analysis = list(analysis or [])
        self.inspiration = list(inspiration or [])
        self.analysis_gate: Optional[asyncio.Event] = None
        self.inspiration_gate: Optional[asyncio.Event] = None
        self.analyzed_images = []
        self.inspiration_calls = []
        self.api_key = "test-key"

    async def analyze_face_shape(self, image):
        self.analyzed_images.append(image)
        if self.analysis_gate is not None:
            await self.analysis_gate.wait()
        outcome = self.analysis.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def generate_inspiration_image(self, shape, tips):
        self.inspiration_calls.append((shape, tips))
        if self.inspiration_gate is not None:
            await self.inspiration_gate.wait()
        outcome = self.inspiration.pop(0) if self.inspiration else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def aclose(self):
        pass


@pytest.fixture
def no_credentials(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)
