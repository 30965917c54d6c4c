from __future__ import annotations

import hashlib
import io
import logging
import math

from fastapi import HTTPException, UploadFile
from starlette.status import HTTP_413_REQUEST_ENTITY_TOO_LARGE

from .ocr_extractor import extract_text_from_image, has_ocr

logger = logging.getLogger("archive_timeline.file_processor")

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

DOCUMENT_TYPES = {"application/pdf", DOCX_MIME, "application/msword", "text/plain"}
IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
AUDIO_TYPES = {"audio/mpeg", "audio/mp3", "audio/wav", "audio/ogg", "audio/aac", "audio/m4a"}
VIDEO_TYPES = {"video/mp4", "video/mpeg", "video/quicktime", "video/webm", "video/x-msvideo"}
ARCHIVE_TYPES = {
    "application/zip",
    "application/x-zip-compressed",
    "application/x-rar-compressed",
    "application/x-7z-compressed",
}
ALLOWED_MIME_TYPES = DOCUMENT_TYPES | IMAGE_TYPES | AUDIO_TYPES | VIDEO_TYPES | ARCHIVE_TYPES

DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024
DEFAULT_MAX_VIDEO_SIZE = 500 * 1024 * 1024
READ_CHUNK_SIZE = 1 * 1024 * 1024


def calculate_file_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def format_file_size(size: int) -> str:
    """1536 -> ``1.5 KB``"""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    index = min(int(math.floor(math.log(size, 1024))), len(units) - 1)
    value = round(size / (1024 ** index), 2)
    return f"{value:g} {units[index]}"


def max_size_for(mime_type: str, *, max_file_size: int, max_video_size: int) -> int:
    return max_video_size if mime_type.startswith("video/") else max_file_size


def validate_upload(
    mime_type: str,
    size: int,
    *,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    max_video_size: int = DEFAULT_MAX_VIDEO_SIZE,
) -> None:
    if mime_type not in ALLOWED_MIME_TYPES:
        raise HTTPException(status_code=400, detail="File type not supported")
    limit = max_size_for(mime_type, max_file_size=max_file_size, max_video_size=max_video_size)
    if size > limit:
        raise HTTPException(
            status_code=HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size exceeds {format_file_size(limit)} limit",
        )


async def read_upload_bytes(upload: UploadFile, *, limit: int) -> bytes:
    await upload.seek(0)
    buffer = bytearray()
    while True:
        chunk = await upload.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        buffer.extend(chunk)
        if len(buffer) > limit:
            raise HTTPException(
                status_code=HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File size exceeds {format_file_size(limit)} limit",
            )
    await upload.seek(0)
    return bytes(buffer)


def extract_text(data: bytes, mime_type: str, *, max_characters: int = 200_000, ocr_lang: str = "eng") -> str:
    """Extract searchable text from a stored file.

    Unsupported types give an empty string. Parser failures propagate so the
    caller can decide whether to continue without text.
    """

    if mime_type == "application/pdf":
        text = _read_pdf(data)
    elif mime_type in {DOCX_MIME, "application/msword"}:
        text = _read_docx(data)
    elif mime_type == "text/plain":
        text = data.decode("utf-8", errors="ignore")
    elif mime_type in IMAGE_TYPES:
        if not has_ocr():
            logger.info("OCR unavailable, skipping text extraction for %s", mime_type)
            return ""
        text = extract_text_from_image(data, lang=ocr_lang)
    else:
        logger.warning("Unsupported file type for text extraction: %s", mime_type)
        return ""

    text = text.strip()
    if len(text) > max_characters:
        text = text[:max_characters]
    return text


def _read_docx(data: bytes) -> str:
    from docx import Document  # type: ignore

    document = Document(io.BytesIO(data))
    paragraphs = [paragraph.text for paragraph in document.paragraphs]
    return "\n".join(paragraphs)


def _read_pdf(data: bytes) -> str:
    import pdfplumber  # type: ignore

    text_chunks = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            text_chunks.append(page.extract_text() or "")
    return "\n".join(text_chunks)
