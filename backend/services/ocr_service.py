"""
OCR Service — wraps the Tesseract engine that turns a photographed bill into
raw text plus an overall confidence.

The engine is an explicitly owned resource: the app lifespan starts one
OcrEngine, keeps it on app.state, and closes it on shutdown.  The receipt
parser never touches it and only ever sees the text this module returns.
"""
import io
import logging
import os
import shutil
from typing import Optional

import pytesseract
from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger("billscan.ocr")

OCR_LANG = os.environ.get("OCR_LANG", "eng")
OCR_PSM = int(os.environ.get("OCR_PSM", "6"))
TESSERACT_CMD = os.environ.get("TESSERACT_CMD", "")


class OCRError(Exception):
    """Raised when the OCR engine can't produce text (missing binary, bad image, engine error)."""
    pass


class OcrResult:
    def __init__(self, text: str, confidence: float):
        self.text = text
        self.confidence = confidence   # 0.0–1.0

    def __repr__(self):
        return f"OcrResult(confidence={self.confidence:.2f}, {len(self.text)} chars)"


# ── Tesseract word-table helpers ──────────────────────────────────────────────

def text_from_tesseract_data(data: dict) -> str:
    """
    Rebuild newline-separated text from a pytesseract image_to_data() dict.
    Words are grouped by (block, paragraph, line) in the order Tesseract emitted them.
    """
    if not data or not data.get("text"):
        return ""

    lines: dict[tuple, list[str]] = {}
    for i, word in enumerate(data["text"]):
        word = (word or "").strip()
        if not word:
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word)

    return "\n".join(" ".join(words) for words in lines.values())


def confidence_from_tesseract_data(data: dict) -> float:
    """Mean word confidence scaled to 0–1.  Rows with conf -1 are layout rows, not words."""
    if not data or not data.get("conf"):
        return 0.0

    scores = []
    for i, conf in enumerate(data["conf"]):
        try:
            value = float(conf)
        except (TypeError, ValueError):
            continue
        if value < 0 or not (data["text"][i] or "").strip():
            continue
        scores.append(value)

    if not scores:
        return 0.0
    return round(min(sum(scores) / len(scores), 100.0) / 100, 4)


def is_tesseract_available(tesseract_cmd: Optional[str] = None) -> bool:
    """True if the tesseract binary can be found."""
    return shutil.which(tesseract_cmd or TESSERACT_CMD or "tesseract") is not None


# ── Engine ────────────────────────────────────────────────────────────────────

def load_image(image_bytes: bytes) -> "Image.Image":
    """Decode upload bytes, fix EXIF orientation and normalise the colour mode."""
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image = ImageOps.exif_transpose(image)
    except (UnidentifiedImageError, OSError) as e:
        raise OCRError(f"Cannot open image: {e}") from e

    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    return image


class OcrEngine:
    """
    A started-once Tesseract handle.

        engine = OcrEngine.from_env()
        engine.start()
        result = engine.recognize(image_bytes)
        engine.close()

    Also usable as a context manager.  Each recognize() call runs its own
    Tesseract process, so one engine can serve concurrent requests.
    """

    def __init__(self, lang: str = "eng", psm: int = 6, tesseract_cmd: Optional[str] = None):
        self.lang = lang
        self.psm = psm
        self.tesseract_cmd = tesseract_cmd or None
        self.version: Optional[str] = None
        self._started = False

    @classmethod
    def from_env(cls) -> "OcrEngine":
        return cls(lang=OCR_LANG, psm=OCR_PSM, tesseract_cmd=TESSERACT_CMD)

    @property
    def available(self) -> bool:
        return self._started

    @property
    def config(self) -> str:
        return f"--psm {self.psm}"

    def start(self) -> "OcrEngine":
        if self._started:
            return self
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        try:
            self.version = str(pytesseract.get_tesseract_version())
        except pytesseract.TesseractNotFoundError as e:
            raise OCRError("tesseract binary not found in PATH") from e
        self._started = True
        logger.info("Tesseract %s ready (lang=%s, psm=%d)", self.version, self.lang, self.psm)
        return self

    def close(self) -> None:
        if self._started:
            logger.info("Tesseract engine released")
        self._started = False

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def recognize(self, image_bytes: bytes) -> OcrResult:
        """Run OCR on image bytes and return text + confidence (0–1)."""
        if not self._started:
            raise OCRError("OCR engine is not started")
        if not image_bytes:
            raise OCRError("Empty image")

        image = load_image(image_bytes)
        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.lang,
                config=self.config,
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            raise OCRError(f"Tesseract failed: {e}") from e

        result = OcrResult(
            text=text_from_tesseract_data(data),
            confidence=confidence_from_tesseract_data(data),
        )
        logger.debug("OCR read %d chars at %.0f%% confidence",
                     len(result.text), result.confidence * 100)
        return result
