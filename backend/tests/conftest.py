"""
Shared fixtures for backend tests.

Nothing here needs a real Tesseract install: the OCR engine is replaced by a
stub that returns canned text, and images are generated in memory with Pillow.
"""
import io

import pytest
from PIL import Image

from services.ocr_service import OcrResult, OCRError


class StubOcrEngine:
    """Stands in for OcrEngine with canned results."""

    def __init__(self, text="", confidence=0.9, available=True, error=None):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.lang = "eng"
        self.psm = 6
        self.tesseract_cmd = None
        self.version = "5.3.0" if available else None
        self._available = available
        self.calls = 0

    @property
    def available(self):
        return self._available

    def recognize(self, image_bytes):
        self.calls += 1
        if self.error:
            raise OCRError(self.error)
        return OcrResult(self.text, self.confidence)

    def close(self):
        self._available = False


SAMPLE_BILL = """
    THE BURGER JOINT
    Burger             12.99
    Fries               4.50
    Soda                2.99
    Subtotal           20.48
    Tax                 1.64
    Total              22.12
"""


@pytest.fixture
def png_bytes():
    """A tiny valid PNG."""
    buf = io.BytesIO()
    Image.new("RGB", (40, 20), "white").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def stub_engine_factory():
    return StubOcrEngine


@pytest.fixture
def stub_engine():
    return StubOcrEngine(text=SAMPLE_BILL, confidence=0.87)
