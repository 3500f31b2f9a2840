"""
Router for content pipeline endpoints.
Handles uploads, status tracking, manual retries and derivative delivery.
"""

import os
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from config import API_PREFIX, MEDIA_DIR
from database import get_db
from models import ContentItem, Derivative, StatusEvent
from schemas import (
    ContentJobResponse,
    ContentListResponse,
    ContentResponse,
    RemoteContentRequest,
    StatusEventResponse,
    StatusResponse,
    DerivativeResponse,
)
from services import (
    RemoteFetcher,
    Uploader,
    UploadValidator,
    describe_error,
    ensure_public_url,
    remove_content_files,
)
from status import ContentStatus, can_transition
from tasks import fetch_remote_content_task, process_content_task
from tracker import StatusTracker


# Create the router
router = APIRouter(prefix="/content", tags=["content"])


def _get_item(db: Session, content_id: str) -> ContentItem:
    item = db.query(ContentItem).filter(ContentItem.id == content_id).first()
    if not item:
        raise HTTPException(status_code=404, detail="Content not found.")
    return item


def _derivative_view(content_id: str, derivative: Derivative) -> dict:
    return {
        "kind": derivative.kind,
        "mime_type": derivative.mime_type,
        "size_bytes": derivative.size_bytes,
        "url": f"{API_PREFIX}{router.prefix}/{content_id}/derivatives/{derivative.kind}",
    }


def _content_view(item: ContentItem) -> dict:
    return {
        "id": item.id,
        "filename": item.filename,
        "content_type": item.content_type,
        "kind": item.kind,
        "status": item.status,
        "size_bytes": item.size_bytes,
        "checksum": item.checksum,
        "source_url": item.source_url,
        "media_info": item.media_info,
        "error": item.error,
        "attempts": item.attempts,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
        "derivatives": [_derivative_view(item.id, d) for d in item.derivatives],
    }


def _enqueue_processing(content_id: str):
    try:
        process_content_task.delay(content_id)
    except Exception as e:
        logging.error(f"Failed to queue content {content_id} for processing: {e}")
        raise HTTPException(
            status_code=503,
            detail="Content stored but could not be queued for processing. Retry via /process.",
        )


@router.post("/", response_model=ContentJobResponse, status_code=202)
def upload_content(file: UploadFile = File(...), db: Session = Depends(get_db)):
    """
    Stores an uploaded file, moves it from `uploading` to `uploaded` and
    queues it for processing.
    """
    filename, kind = UploadValidator(file.filename, file.content_type).run()

    item = ContentItem(filename=filename, kind=kind, content_type=file.content_type)
    tracker = StatusTracker(db)
    tracker.start(item, detail="multipart upload")
    db.commit()

    uploader = Uploader(item.id, filename)
    try:
        uploader.save(file.file)
    except Exception as e:
        logging.error(f"Upload failed for content {item.id}: {e}")
        db.rollback()
        tracker.transition(item, ContentStatus.FAILED, error=describe_error(e))
        db.commit()
        if isinstance(e, HTTPException):
            raise
        raise HTTPException(status_code=500, detail="Failed to store uploaded content.")

    item.storage_path = uploader.path
    item.size_bytes = uploader.size_bytes
    item.checksum = uploader.checksum
    tracker.transition(item, ContentStatus.UPLOADED, detail=f"{uploader.size_bytes} bytes")
    db.commit()

    _enqueue_processing(item.id)
    logging.info(f"✨ Content {item.id} ({kind}) submitted for processing")
    return {"content_id": item.id, "status": item.status}


@router.post("/from-url", response_model=ContentJobResponse, status_code=202)
def ingest_remote_content(request: RemoteContentRequest, db: Session = Depends(get_db)):
    """Registers remote content in `uploading` and queues the download."""
    url = str(request.url)
    # Host names are resolved and checked again by the worker right before downloading
    ensure_public_url(url, resolve=False)
    filename, kind = UploadValidator(request.filename or RemoteFetcher.filename_from_url(url)).run()

    item = ContentItem(filename=filename, kind=kind, source_url=url)
    StatusTracker(db).start(item, detail=f"fetch from {url}")
    db.commit()

    try:
        fetch_remote_content_task.delay(item.id, url)
    except Exception as e:
        logging.error(f"Failed to queue fetch for content {item.id}: {e}")
        StatusTracker(db).transition(item, ContentStatus.FAILED, error="Could not queue the download.")
        db.commit()
        raise HTTPException(status_code=503, detail="Failed to start the download job.")

    logging.info(f"✨ Content {item.id} queued for download from {url}")
    return {"content_id": item.id, "status": item.status}


@router.get("/", response_model=ContentListResponse)
def list_content(
    status: Optional[ContentStatus] = None,
    kind: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    query = db.query(ContentItem)
    if status is not None:
        query = query.filter(ContentItem.status == status)
    if kind:
        query = query.filter(ContentItem.kind == kind)

    total = query.count()
    items = query.order_by(ContentItem.created_at.desc(), ContentItem.id).offset(offset).limit(limit).all()
    return {
        "items": [_content_view(item) for item in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/{content_id}", response_model=ContentResponse)
def get_content(content_id: str, db: Session = Depends(get_db)):
    return _content_view(_get_item(db, content_id))


@router.get("/{content_id}/status", response_model=StatusResponse)
def get_content_status(content_id: str, db: Session = Depends(get_db)):
    """
    Checks the status of a content item by querying the database.
    """
    item = _get_item(db, content_id)
    return {
        "content_id": item.id,
        "status": item.status,
        "error": item.error,
        "attempts": item.attempts,
    }


@router.get("/{content_id}/history", response_model=List[StatusEventResponse])
def get_content_history(content_id: str, db: Session = Depends(get_db)):
    _get_item(db, content_id)
    return StatusTracker(db).history(content_id)


@router.post("/{content_id}/process", response_model=ContentJobResponse, status_code=202)
def process_content(content_id: str, db: Session = Depends(get_db)):
    """
    Manual intervention: queues an uploaded, failed or completed item for
    (re)processing.
    """
    item = _get_item(db, content_id)
    if not can_transition(item.status, ContentStatus.PROCESSING):
        raise HTTPException(
            status_code=409,
            detail=f"Content in status '{item.status.value}' cannot be processed.",
        )
    if not item.storage_path or not os.path.exists(item.storage_path):
        raise HTTPException(status_code=409, detail="Content has no uploaded file to process.")

    _enqueue_processing(item.id)
    logging.info(f"🔁 Content {item.id} re-queued from '{item.status.value}'")
    return {"content_id": item.id, "status": item.status}


@router.get("/{content_id}/derivatives", response_model=List[DerivativeResponse])
def list_derivatives(content_id: str, db: Session = Depends(get_db)):
    item = _get_item(db, content_id)
    return [_derivative_view(item.id, d) for d in item.derivatives]


@router.get("/{content_id}/derivatives/{kind}")
def get_derivative(content_id: str, kind: str, db: Session = Depends(get_db)):
    """
    Serves a derivative file once the content item has completed.
    """
    item = _get_item(db, content_id)
    if item.status != ContentStatus.COMPLETED:
        raise HTTPException(
            status_code=409,
            detail=f"Content is '{item.status.value}'; derivatives are served once it is completed.",
        )

    derivative = next((d for d in item.derivatives if d.kind == kind), None)
    if derivative is None:
        raise HTTPException(status_code=404, detail=f"No '{kind}' derivative for this content.")

    # Only serve files from inside the media directory
    path = os.path.abspath(derivative.path)
    if not path.startswith(os.path.abspath(MEDIA_DIR) + os.sep):
        raise HTTPException(status_code=403, detail="Forbidden: Access to this path is not allowed.")
    if not os.path.exists(path):
        raise HTTPException(status_code=404, detail="Derivative file not found.")

    stem = os.path.splitext(item.filename)[0]
    extension = os.path.splitext(path)[1]
    return FileResponse(path, media_type=derivative.mime_type, filename=f"{stem}_{kind}{extension}")


@router.delete("/{content_id}", status_code=204)
def delete_content(content_id: str, db: Session = Depends(get_db)):
    """
    Deletes an item, its history and its files. The row is removed with a
    single conditional DELETE so a worker cannot move it into `processing`
    between the check and the delete.
    """
    item = _get_item(db, content_id)
    storage_path = item.storage_path

    deleted = (
        db.query(ContentItem)
        .filter(ContentItem.id == content_id, ContentItem.status != ContentStatus.PROCESSING)
        .delete(synchronize_session=False)
    )
    if deleted != 1:
        db.rollback()
        raise HTTPException(status_code=409, detail="Content is being processed and cannot be deleted.")

    # Bulk deletes skip the ORM cascade
    db.query(Derivative).filter(Derivative.content_id == content_id).delete(synchronize_session=False)
    db.query(StatusEvent).filter(StatusEvent.content_id == content_id).delete(synchronize_session=False)
    db.commit()

    remove_content_files(content_id, storage_path)
    logging.info(f"🗑️ Content {content_id} deleted")
