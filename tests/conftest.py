"""Shared fixtures. Timing knobs are shortened before the app config is imported."""
import io
import os
from dataclasses import dataclass

os.environ.setdefault("PROGRESS_TICK_SECONDS", "0.01")
os.environ.setdefault("AUTO_DOWNLOAD_DELAY_SECONDS", "0.05")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import fitz  # PyMuPDF
import pytest
from PIL import Image

from converter.conversion.adapters import ArtifactStore, DownloadLog, NotificationLog
from converter.conversion.models import FileCandidate
from converter.conversion.service import ConversionQueueManager
from converter.conversion.transcode import transcode


def make_jpeg(width: int = 400, height: int = 300, color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG", quality=95)
    return buf.getvalue()


def make_pdf(pages: int = 1) -> bytes:
    """A4 pages with the top half filled red."""
    doc = fitz.open()
    for n in range(pages):
        page = doc.new_page(width=595, height=842)
        page.draw_rect(fitz.Rect(0, 0, 595, 421), color=(1, 0, 0), fill=(1, 0, 0))
        page.insert_text((72, 600), f"Page {n + 1}", fontsize=24)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def jpeg_bytes():
    return make_jpeg()


@pytest.fixture
def pdf_bytes():
    return make_pdf()


@pytest.fixture
def jpeg_candidate(jpeg_bytes):
    return FileCandidate(name="photo.JPG", media_type="image/jpeg", data=jpeg_bytes)


@pytest.fixture
def pdf_candidate(pdf_bytes):
    return FileCandidate(name="report.pdf", media_type="application/pdf", data=pdf_bytes)


@dataclass
class QueueHarness:
    manager: ConversionQueueManager
    notifications: NotificationLog
    downloads: DownloadLog
    artifacts: ArtifactStore

    def titles(self) -> list[str]:
        return [n.title for n in self.notifications.entries()]


@pytest.fixture
def make_queue():
    """Build a manager with fast timings and in-memory collaborators."""

    def factory(transcoder=transcode, **overrides) -> QueueHarness:
        notifications = NotificationLog()
        downloads = DownloadLog()
        artifacts = ArtifactStore()
        options = {
            "tick_seconds": 0.01,
            "progress_step": 10,
            "progress_cap": 90,
            "auto_download_delay": 0.0,
            "timeout": 10,
            "max_items": 0,
            "max_retries": 0,
        }
        options.update(overrides)
        manager = ConversionQueueManager(notifications, downloads, artifacts, transcoder=transcoder, **options)
        return QueueHarness(manager, notifications, downloads, artifacts)

    return factory
