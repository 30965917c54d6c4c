from __future__ import annotations

import io

from PIL import Image

from .media_processor import process_media


class RecordingStorage:
    def __init__(self):
        self.uploads = []

    def upload_file(self, data: bytes, file_name: str, mime_type: str) -> str:
        self.uploads.append((file_name, mime_type, data))
        return f"/api/files/{file_name}"


def _png(width: int, height: int) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(120, 80, 40)).save(buffer, format="PNG")
    return buffer.getvalue()


def test_large_image_gets_thumbnail_and_scaled_preview():
    storage = RecordingStorage()
    result = process_media(_png(2400, 1200), "harbour.png", "image/png", storage)

    assert result.metadata["width"] == 2400
    assert result.metadata["height"] == 1200
    assert result.thumbnail_url == "/api/files/thumb-harbour.webp"
    assert result.preview_url == "/api/files/preview-harbour.webp"

    thumb_name, thumb_type, thumb_data = storage.uploads[0]
    assert thumb_type == "image/webp"
    with Image.open(io.BytesIO(thumb_data)) as thumb:
        assert max(thumb.size) <= 300
    with Image.open(io.BytesIO(storage.uploads[1][2])) as preview:
        assert preview.size == (1200, 600)


def test_small_image_preview_keeps_size():
    storage = RecordingStorage()
    process_media(_png(400, 200), "card.png", "image/png", storage)
    with Image.open(io.BytesIO(storage.uploads[1][2])) as preview:
        assert preview.size == (400, 200)


def test_unreadable_image_returns_empty_result():
    storage = RecordingStorage()
    result = process_media(b"not an image", "broken.png", "image/png", storage)
    assert result.to_dict() == {}
    assert storage.uploads == []


def test_video_and_audio_only_report_metadata():
    storage = RecordingStorage()
    video = process_media(b"0" * 10, "clip.mp4", "video/mp4", storage)
    audio = process_media(b"0" * 4, "song.mp3", "audio/mpeg", storage)

    assert video.to_dict() == {"metadata": {"type": "video", "mime_type": "video/mp4", "size": 10}}
    assert audio.metadata["type"] == "audio"
    assert storage.uploads == []
    assert process_media(b"PK", "bundle.zip", "application/zip", storage).to_dict() == {}
