# tasks.py

import os
import shutil
import logging
import traceback

from celery import Celery

from database import SessionLocal
from models import ContentItem, Derivative
from config import CELERY_BROKER_URL, CELERY_RESULT_BACKEND, LOG_LEVEL, LOG_FORMAT
from status import ContentStatus, InvalidStatusTransition, StaleStatusError, is_terminal
from tracker import StatusTracker
from services import (
    DerivativeGenerator,
    MediaProcessor,
    ProcessingError,
    RemoteFetcher,
    Uploader,
    WebhookNotifier,
    publish_staging_dir,
    remove_content_files,
    staging_dir_for,
    describe_error,
)

celery = Celery('tasks', broker=CELERY_BROKER_URL, backend=CELERY_RESULT_BACKEND)
celery.conf.update(task_serializer="json", result_serializer="json", accept_content=["json"])
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)


def _load(db, content_id):
    return db.query(ContentItem).filter(ContentItem.id == content_id).first()


def _mark_failed(db, content_id: str, expected: ContentStatus, error: Exception):
    """Moves an item to `failed` if it is still where the failed step left it."""
    db.rollback()
    item = _load(db, content_id)
    if not item or item.status != expected:
        return None
    try:
        StatusTracker(db).transition(item, ContentStatus.FAILED, error=describe_error(error))
        db.commit()
    except (InvalidStatusTransition, StaleStatusError) as e:
        db.rollback()
        logging.warning(f"Could not mark content {content_id} as failed: {e}")
        return None
    return item


def _notify(item):
    if item is not None and is_terminal(item.status):
        WebhookNotifier().notify(item.id, item.status.value, item.error)


@celery.task
def process_content_task(content_id: str):
    """
    Takes an uploaded (or failed/completed, when retried) item through
    processing and derivative generation to `completed` or `failed`.
    """
    db = SessionLocal()
    staging_dir = None

    try:
        item = _load(db, content_id)
        if not item:
            logging.warning(f"Content {content_id} no longer exists, nothing to process.")
            return

        tracker = StatusTracker(db)
        try:
            tracker.transition(item, ContentStatus.PROCESSING, detail=f"attempt {item.attempts + 1}")
        except (InvalidStatusTransition, StaleStatusError) as e:
            db.rollback()
            logging.warning(f"⏭️ Skipping content {content_id}: {e}")
            return
        item.attempts = item.attempts + 1
        # Reprocessing replaces whatever an earlier run produced
        item.derivatives.clear()
        db.commit()
        remove_content_files(content_id, None)
        storage_path = item.storage_path
        logging.info(f"📝 Worker processing content {content_id} ({item.kind}, attempt {item.attempts})")

        try:
            if not storage_path or not os.path.exists(storage_path):
                raise ProcessingError("Original file is missing from storage")

            staging_dir = staging_dir_for(item.id)
            processor = MediaProcessor(storage_path, item.kind)
            media_info = processor.probe()
            optimized_path, optimized_mime = processor.optimize(staging_dir)
            generator = DerivativeGenerator(storage_path, item.kind, staging_dir, media_info)
            produced = [("optimized", optimized_path, optimized_mime)] + generator.run()

            output_dir = publish_staging_dir(item.id, staging_dir)
            item.media_info = media_info
            for kind, path, mime_type in produced:
                path = os.path.join(output_dir, os.path.basename(path))
                item.derivatives.append(
                    Derivative(kind=kind, path=path, mime_type=mime_type, size_bytes=os.path.getsize(path))
                )

            tracker.transition(item, ContentStatus.COMPLETED, detail=f"{len(produced)} derivatives generated")
            db.commit()
            logging.info(f"✅ Worker finished content {content_id}. Derivatives: {', '.join(k for k, _, _ in produced)}")

        except Exception as e:
            logging.error(f"❌ Worker failed content {content_id}. Error: {e}")
            traceback.print_exc()
            item = _mark_failed(db, content_id, ContentStatus.PROCESSING, e)
            if item is None and _load(db, content_id) is None:
                # Deleted while we worked; whatever we wrote has no owner now
                remove_content_files(content_id, storage_path)
            elif item is not None:
                remove_content_files(content_id, None)

        _notify(item)

    finally:
        if staging_dir:
            shutil.rmtree(staging_dir, ignore_errors=True)
        db.close()


@celery.task
def fetch_remote_content_task(content_id: str, url: str):
    """
    Downloads remote content for an item in `uploading`, then queues it for processing.
    """
    db = SessionLocal()

    try:
        item = _load(db, content_id)
        if not item:
            logging.warning(f"Content {content_id} no longer exists, nothing to fetch.")
            return
        if item.status != ContentStatus.UPLOADING:
            logging.warning(f"⏭️ Skipping fetch for content {content_id}: status is {item.status.value}")
            return

        uploader = Uploader(item.id, item.filename)
        try:
            RemoteFetcher(url).fetch_to(uploader)
            item.storage_path = uploader.path
            item.size_bytes = uploader.size_bytes
            item.checksum = uploader.checksum
            StatusTracker(db).transition(item, ContentStatus.UPLOADED, detail=f"{uploader.size_bytes} bytes from {url}")
            db.commit()
        except Exception as e:
            logging.error(f"❌ Fetch failed for content {content_id}. Error: {e}")
            traceback.print_exc()
            # A failed or deleted item never points at this file
            uploader.discard()
            _notify(_mark_failed(db, content_id, ContentStatus.UPLOADING, e))
            return

        process_content_task.delay(content_id)
        logging.info(f"✨ Content {content_id} fetched and queued for processing")

    finally:
        db.close()
