"""API routes for upload, conversion and download."""
import logging
import uuid
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import Response

from converter.config import (
    ACCEPTED_MEDIA_TYPES,
    MAX_FILE_SIZE_BYTES,
    MAX_FILES_PER_UPLOAD,
    MAX_QUEUE_ITEMS,
    MAX_RETRIES,
    PAGE_WIDTH_MM,
    RASTER_CANVAS,
)
from converter.conversion.errors import InvalidState, NotFound, QueueFull
from converter.conversion.intake import admit
from converter.conversion.models import ConversionItem, FileCandidate, TaskStatus
from converter.conversion.transcode import conversion_direction
from converter.sessions import QueueSession, close_session, find_session, get_artifact_store, get_session

logger = logging.getLogger("converter.api")
router = APIRouter(prefix="/api", tags=["converter"])

MAX_FILE_SIZE_MB = MAX_FILE_SIZE_BYTES // (1024 * 1024)


def get_or_create_session_id(request: Request) -> str:
    """Use X-Session-ID header or generate and attach to request for response header."""
    sid = (request.headers.get("X-Session-ID") or "").strip()
    if sid:
        return sid
    sid = str(uuid.uuid4())
    request.state.session_id = sid
    return sid


def get_queue_session(session_id: str = Depends(get_or_create_session_id)) -> QueueSession:
    return get_session(session_id)


def find_queue_session(session_id: str = Depends(get_or_create_session_id)) -> Optional[QueueSession]:
    """Existing session or None; reads never create a queue."""
    return find_session(session_id)


def _item_to_dict(item: ConversionItem) -> dict:
    output = None
    if item.output is not None:
        output = {
            "file_name": item.output.file_name,
            "url": item.output.handle,
            "size_bytes": len(item.output.blob),
        }
    return {
        "id": item.item_id,
        "filename": item.source.name,
        "media_type": item.source.media_type,
        "direction": conversion_direction(item.source.media_type),
        "size_bytes": item.source.size,
        "size_mb": round(item.source.size / 1024 / 1024, 2),
        "status": item.status.value,
        "progress": item.progress,
        "attempt": item.attempt,
        "error": item.error,
        "output": output,
    }


def _get_item_or_404(session: Optional[QueueSession], item_id: str) -> ConversionItem:
    item = session.manager.get(item_id) if session is not None else None
    if item is None:
        raise HTTPException(404, "Item not found")
    return item


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/formats")
def get_formats():
    return {
        "accepted": sorted(ACCEPTED_MEDIA_TYPES),
        "conversions": ["JPG → PDF", "PDF → JPG"],
        "page_width_mm": PAGE_WIDTH_MM,
        "raster_canvas": list(RASTER_CANVAS),
    }


@router.get("/limits")
def get_limits():
    """Return upload and queue limits for the client (0 means unlimited)."""
    return {
        "max_files_per_upload": MAX_FILES_PER_UPLOAD,
        "max_file_size_mb": MAX_FILE_SIZE_MB,
        "max_file_size_bytes": MAX_FILE_SIZE_BYTES,
        "max_queue_items": MAX_QUEUE_ITEMS,
        "max_retries": MAX_RETRIES,
    }


@router.post("/upload")
async def upload_files(
    files: list[UploadFile] = File(...),
    session: QueueSession = Depends(get_queue_session),
):
    """Upload files and add the accepted ones to the queue as pending items."""
    if MAX_FILES_PER_UPLOAD and len(files) > MAX_FILES_PER_UPLOAD:
        raise HTTPException(400, f"Max {MAX_FILES_PER_UPLOAD} files per upload")

    candidates: list[FileCandidate] = []
    for file in files:
        chunks: list[bytes] = []
        total = 0
        while chunk := await file.read(1024 * 1024):
            total += len(chunk)
            if total > MAX_FILE_SIZE_BYTES:
                raise HTTPException(413, f"File too large: {file.filename} (max {MAX_FILE_SIZE_MB} MB)")
            chunks.append(chunk)
        candidates.append(FileCandidate(
            name=file.filename or "upload",
            media_type=file.content_type or "",
            data=b"".join(chunks),
        ))

    accepted = admit(candidates, session.notifications)
    if not accepted:
        raise HTTPException(400, "No valid files uploaded")
    try:
        items = session.manager.enqueue(accepted)
    except QueueFull as e:
        raise HTTPException(429, str(e))
    return {
        "items": [_item_to_dict(i) for i in items],
        "rejected": len(candidates) - len(accepted),
    }


@router.get("/items")
async def list_items(session: Optional[QueueSession] = Depends(find_queue_session)):
    items = session.manager.items() if session is not None else []
    return {"items": [_item_to_dict(i) for i in items]}


@router.get("/items/{item_id}")
async def get_item(item_id: str, session: Optional[QueueSession] = Depends(find_queue_session)):
    """Get conversion status and progress for one item."""
    return _item_to_dict(_get_item_or_404(session, item_id))


@router.post("/items/{item_id}/convert", status_code=202)
async def convert_item(item_id: str, session: Optional[QueueSession] = Depends(find_queue_session)):
    """Start (or retry) the conversion; poll the item for progress."""
    if session is None:
        raise HTTPException(404, "Item not found")
    try:
        session.manager.convert(item_id)
    except NotFound:
        raise HTTPException(404, "Item not found")
    except InvalidState as e:
        raise HTTPException(409, str(e))
    return _item_to_dict(_get_item_or_404(session, item_id))


@router.post("/items/{item_id}/download")
async def download_item(item_id: str, session: Optional[QueueSession] = Depends(find_queue_session)):
    if session is None:
        raise HTTPException(404, "Item not found")
    try:
        output = session.manager.download(item_id)
    except NotFound:
        raise HTTPException(404, "Item not found")
    except InvalidState as e:
        raise HTTPException(409, str(e))
    return {"file_name": output.file_name, "url": output.handle}


@router.delete("/items/{item_id}")
async def remove_item(item_id: str, session: Optional[QueueSession] = Depends(find_queue_session)):
    """Remove an item in any state; removing twice is a no-op."""
    removed = session.manager.remove(item_id) if session is not None else False
    return {"ok": True, "removed": removed}


def _content_disposition(file_name: str) -> str:
    quoted = quote(file_name)
    if quoted != file_name:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{file_name}"'


@router.get("/artifacts/{token}")
def get_artifact(token: str):
    """Serve a converted file as an attachment while its item is still queued."""
    artifact = get_artifact_store().lookup(token)
    if artifact is None:
        raise HTTPException(404, "File not found")
    return Response(
        content=artifact.blob,
        media_type=artifact.media_type,
        headers={"Content-Disposition": _content_disposition(artifact.file_name)},
    )


@router.get("/status")
async def queue_status(session: Optional[QueueSession] = Depends(find_queue_session)):
    if session is None:
        return {**{s.value: 0 for s in TaskStatus}, "total": 0}
    return session.manager.get_queue_status()


@router.get("/notifications")
async def list_notifications(session: Optional[QueueSession] = Depends(find_queue_session)):
    entries = session.notifications.entries() if session is not None else []
    return {
        "notifications": [
            {"title": n.title, "message": n.message, "severity": n.severity.value, "created_at": n.created_at}
            for n in entries
        ]
    }


@router.get("/downloads")
async def list_downloads(session: Optional[QueueSession] = Depends(find_queue_session)):
    """Save requests raised by explicit or automatic downloads."""
    entries = session.downloads.entries() if session is not None else []
    return {
        "downloads": [
            {"file_name": d.file_name, "url": d.handle, "requested_at": d.requested_at}
            for d in entries
        ]
    }


@router.delete("/session")
async def end_session(session_id: str = Depends(get_or_create_session_id)):
    """Drop the session queue and release all of its converted files."""
    await close_session(session_id)
    return {"ok": True, "message": "Session cleared"}
