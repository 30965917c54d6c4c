from __future__ import annotations

import io
import logging
import re
from typing import List

from PIL import Image, ImageEnhance, ImageFilter, ImageOps, UnidentifiedImageError

try:  # pragma: no cover - OCR dependencies are optional
    import pytesseract  # type: ignore[import]
except ImportError:  # pragma: no cover - continue without OCR
    pytesseract = None  # type: ignore[assignment]

logger = logging.getLogger("archive_timeline.ocr_extractor")

DEFAULT_TESSERACT_CONFIG = "--oem 3 --psm 6 -c preserve_interword_spaces=1"
SPARSE_TESSERACT_CONFIG = "--oem 3 --psm 11"
TESSERACT_TIMEOUT_SECONDS = 12
MAX_OCR_DIMENSION = 2400
MEDIAN_FILTER_THRESHOLD = 1_200_000  # pixels
GOOD_SCORE_THRESHOLD = 3.0
ROTATIONS = (0, 90, 270, 180)

_WORD_PATTERN = re.compile(r"[A-Za-z]{3,}")

_OCR_INITIALISED = False
_OCR_AVAILABLE = False


def has_ocr() -> bool:
    """Whether pytesseract and the Tesseract binary are usable (cached)."""
    global _OCR_INITIALISED, _OCR_AVAILABLE
    if _OCR_INITIALISED:
        return _OCR_AVAILABLE
    _OCR_INITIALISED = True
    if pytesseract is None:
        _OCR_AVAILABLE = False
        return False
    try:
        pytesseract.get_tesseract_version()
    except Exception:  # pragma: no cover - binary missing
        logger.warning("Tesseract binary not found; OCR disabled")
        _OCR_AVAILABLE = False
        return False
    _OCR_AVAILABLE = True
    return True


def extract_text_from_image(image_bytes: bytes, *, lang: str = "eng") -> str:
    """Run OCR over an uploaded image, trying rotated views until one reads well."""
    if pytesseract is None or not has_ocr():
        raise RuntimeError("OCR runtime is not available.")

    image = _load_image(image_bytes)
    try:
        processed = _preprocess_image(_downscale(image, MAX_OCR_DIMENSION))
        try:
            best_text = ""
            best_score = float("-inf")
            for angle in ROTATIONS:
                candidate = processed if angle == 0 else processed.rotate(angle, expand=True)
                try:
                    for config in (DEFAULT_TESSERACT_CONFIG, SPARSE_TESSERACT_CONFIG):
                        text = _perform_ocr(candidate, lang=lang, config=config)
                        score = score_text(text)
                        if score > best_score:
                            best_score, best_text = score, text
                        if best_score >= GOOD_SCORE_THRESHOLD:
                            return best_text.strip()
                finally:
                    if candidate is not processed:
                        candidate.close()
            return best_text.strip()
        finally:
            processed.close()
    finally:
        image.close()


def _load_image(image_bytes: bytes) -> Image.Image:
    try:
        return Image.open(io.BytesIO(image_bytes))
    except UnidentifiedImageError as exc:
        raise ValueError("Could not read image data.") from exc


def _downscale(image: Image.Image, max_dimension: int) -> Image.Image:
    width, height = image.size
    longest = max(width, height)
    if longest <= max_dimension:
        return image.copy()
    scale = max_dimension / float(longest)
    return image.resize((max(1, int(width * scale)), max(1, int(height * scale))), Image.Resampling.LANCZOS)


def _preprocess_image(image: Image.Image) -> Image.Image:
    grayscale = ImageOps.autocontrast(image.convert("L"))
    enhanced = ImageEnhance.Contrast(grayscale).enhance(1.3)
    width, height = enhanced.size
    if width * height >= MEDIAN_FILTER_THRESHOLD:
        enhanced = enhanced.filter(ImageFilter.MedianFilter(size=3))
    return enhanced.point(lambda value: 255 if value > 135 else 0).convert("L")


def _perform_ocr(image: Image.Image, *, lang: str, config: str) -> str:
    try:
        return pytesseract.image_to_string(  # type: ignore[union-attr]
            image,
            lang=lang,
            config=config,
            timeout=TESSERACT_TIMEOUT_SECONDS,
        )
    except RuntimeError as exc:
        logger.warning("Tesseract timed out: %s", exc)
    except pytesseract.TesseractError as exc:  # type: ignore[union-attr]
        logger.warning("Tesseract failed: %s", exc)
    return ""


def score_text(text: str) -> float:
    """Rough readability score: real words count, stray symbols do not."""
    stripped = text.strip()
    if not stripped:
        return float("-inf")
    words: List[str] = _WORD_PATTERN.findall(stripped)
    noise = sum(1 for char in stripped if not (char.isalnum() or char.isspace() or char in ".,;:'\"-()"))
    return len(words) / 10.0 - noise / 20.0
