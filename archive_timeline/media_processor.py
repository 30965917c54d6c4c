from __future__ import annotations

import io
import logging
from dataclasses import asdict, dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger("archive_timeline.media_processor")

THUMBNAIL_SIZE = (300, 300)
PREVIEW_MAX_WIDTH = 1200
THUMBNAIL_QUALITY = 80
PREVIEW_QUALITY = 85


@dataclass
class MediaProcessingResult:
    thumbnail_url: Optional[str] = None
    preview_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value}


def _stem(file_name: str) -> str:
    return PurePosixPath(file_name).stem or "file"


def _to_webp(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    mode = "RGBA" if image.mode in {"RGBA", "LA", "P"} else "RGB"
    image.convert(mode).save(buffer, format="WEBP", quality=quality)
    return buffer.getvalue()


def process_image(data: bytes, file_name: str, storage) -> MediaProcessingResult:
    """Thumbnail plus a web preview, both WebP, pushed through ``storage``."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            width, height = image.size
            result = MediaProcessingResult(
                metadata={
                    "width": width,
                    "height": height,
                    "format": (image.format or "").lower() or None,
                    "has_alpha": image.mode in {"RGBA", "LA"} or "transparency" in image.info,
                }
            )

            thumbnail = image.copy()
            thumbnail.thumbnail(THUMBNAIL_SIZE)
            result.thumbnail_url = storage.upload_file(
                _to_webp(thumbnail, THUMBNAIL_QUALITY),
                f"thumb-{_stem(file_name)}.webp",
                "image/webp",
            )

            preview = image
            if width > PREVIEW_MAX_WIDTH:
                ratio = PREVIEW_MAX_WIDTH / float(width)
                preview = image.resize((PREVIEW_MAX_WIDTH, max(1, int(height * ratio))), Image.Resampling.LANCZOS)
            result.preview_url = storage.upload_file(
                _to_webp(preview, PREVIEW_QUALITY),
                f"preview-{_stem(file_name)}.webp",
                "image/webp",
            )
            return result
    except (UnidentifiedImageError, OSError) as exc:
        logger.warning("Image processing failed for %s: %s", file_name, exc)
        return MediaProcessingResult()


def process_media(data: bytes, file_name: str, mime_type: str, storage) -> MediaProcessingResult:
    if mime_type.startswith("image/"):
        return process_image(data, file_name, storage)
    if mime_type.startswith("video/") or mime_type.startswith("audio/"):
        kind = mime_type.split("/", 1)[0]
        # ffmpeg frame grabs and waveforms are not wired in yet.
        return MediaProcessingResult(metadata={"type": kind, "mime_type": mime_type, "size": len(data)})
    return MediaProcessingResult()
