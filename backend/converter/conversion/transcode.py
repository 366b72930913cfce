"""JPEG <-> PDF transcoding. Stateless; safe to call from worker threads."""
import io
import logging
import re

import fitz  # PyMuPDF
from PIL import Image, ImageOps

from converter.config import (
    DOCUMENT_IMAGE_QUALITY,
    JPEG_QUALITY,
    PAGE_WIDTH_MM,
    PDF_MEDIA_TYPE,
    RASTER_BACKGROUND,
    RASTER_CANVAS,
    RASTER_DPI,
)
from converter.conversion.errors import DecodeError, EncodeError, ReadError
from converter.conversion.models import FileCandidate
from converter.conversion.resize import fit_on_canvas, hex_to_rgb

logger = logging.getLogger("converter.transcode")

MM_PER_INCH = 25.4
_JPEG_SUFFIX = re.compile(r"\.(jpg|jpeg)$", re.IGNORECASE)
_PDF_SUFFIX = re.compile(r"\.pdf$", re.IGNORECASE)


def document_name(file_name: str) -> str:
    """photo.JPG -> photo.pdf; names without a JPEG extension get .pdf appended."""
    if _JPEG_SUFFIX.search(file_name):
        return _JPEG_SUFFIX.sub(".pdf", file_name)
    return f"{file_name}.pdf"


def image_name(file_name: str) -> str:
    """report.PDF -> report.jpg; names without a PDF extension get .jpg appended."""
    if _PDF_SUFFIX.search(file_name):
        return _PDF_SUFFIX.sub(".jpg", file_name)
    return f"{file_name}.jpg"


def page_height_mm(width_px: int, height_px: int, page_width_mm: float = PAGE_WIDTH_MM) -> float:
    return height_px * page_width_mm / width_px


def conversion_direction(media_type: str) -> str:
    return "PDF → JPG" if media_type.lower() == PDF_MEDIA_TYPE else "JPG → PDF"


def output_media_type(source: FileCandidate) -> str:
    return "image/jpeg" if source.is_document else PDF_MEDIA_TYPE


def image_to_document(blob: bytes, declared_type: str, file_name: str) -> tuple[bytes, str]:
    """
    Place the whole image on a single PDF page PAGE_WIDTH_MM wide whose height
    keeps the image aspect ratio. The image is embedded at full resolution:
    Pillow sizes the page from the pixel count and the resolution, so the
    resolution is chosen to make the page exactly PAGE_WIDTH_MM wide.
    """
    try:
        with Image.open(io.BytesIO(blob)) as src:
            src.load()
            if src.format != "JPEG":
                logger.warning("%s declared as %s but decoded as %s", file_name, declared_type, src.format)
            img = ImageOps.exif_transpose(src)
    except Exception as e:
        raise DecodeError(f"Failed to load image {file_name}: {e}") from e

    if img.mode not in ("RGB", "L", "CMYK"):
        img = img.convert("RGB")
    w, h = img.size
    if w == 0 or h == 0:
        raise DecodeError(f"Image {file_name} has no pixels")
    resolution = w * MM_PER_INCH / PAGE_WIDTH_MM

    out = io.BytesIO()
    try:
        img.save(
            out,
            format="PDF",
            resolution=resolution,
            quality=DOCUMENT_IMAGE_QUALITY,
            title=file_name,
        )
    except Exception as e:
        raise EncodeError(f"Failed to write PDF for {file_name}: {e}") from e
    logger.info(
        "Converted %s (%sx%s) -> PDF page %.1fx%.1f mm",
        file_name, w, h, PAGE_WIDTH_MM, page_height_mm(w, h),
    )
    return out.getvalue(), document_name(file_name)


def render_zoom(page_width_pt: float, page_height_pt: float) -> float:
    """Zoom for RASTER_DPI, capped so the rendered page fits inside RASTER_CANVAS."""
    canvas_w, canvas_h = RASTER_CANVAS
    zoom = RASTER_DPI / 72.0
    if page_width_pt > 0 and page_height_pt > 0:
        zoom = min(zoom, canvas_w / page_width_pt, canvas_h / page_height_pt)
    return zoom


def document_to_image(blob: bytes, file_name: str) -> tuple[bytes, str]:
    """
    Render the first page of the PDF at RASTER_DPI, fit it onto a fixed
    RASTER_CANVAS canvas and encode it as JPEG at JPEG_QUALITY.

    The zoom never exceeds what the canvas can show, so oversized pages are
    rasterized straight at canvas size instead of at full DPI.
    """
    try:
        doc = fitz.open(stream=blob, filetype="pdf")
    except Exception as e:
        raise ReadError(f"Failed to read file {file_name}: {e}") from e

    try:
        if doc.page_count == 0:
            raise ReadError(f"Document {file_name} has no pages")
        page = doc[0]
        zoom = render_zoom(page.rect.width, page.rect.height)
        pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        rendered = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
        page_count = doc.page_count
    except ReadError:
        raise
    except Exception as e:
        raise ReadError(f"Failed to render {file_name}: {e}") from e
    finally:
        doc.close()

    canvas_w, canvas_h = RASTER_CANVAS
    canvas = fit_on_canvas(rendered, canvas_w, canvas_h, hex_to_rgb(RASTER_BACKGROUND))
    out = io.BytesIO()
    try:
        canvas.save(out, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    except Exception as e:
        raise EncodeError(f"Failed to write JPEG for {file_name}: {e}") from e
    logger.info("Converted %s (page 1 of %s) -> %sx%s JPEG", file_name, page_count, canvas_w, canvas_h)
    return out.getvalue(), image_name(file_name)


def transcode(source: FileCandidate) -> tuple[bytes, str]:
    """Route by declared media type: PDF -> JPEG, anything else -> PDF."""
    if source.is_document:
        return document_to_image(source.data, source.name)
    return image_to_document(source.data, source.media_type, source.name)
