"""
Status Tracker: the only code that writes ContentItem.status.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from models import ContentItem, StatusEvent, _utcnow
from status import ContentStatus, StaleStatusError, validate_transition


class StatusTracker:
    """Applies status transitions and records them as events.

    The tracker never commits; the caller owns the session and decides when
    the transition becomes visible.
    """

    def __init__(self, db: Session):
        self.db = db

    def _record(self, item: ContentItem, from_status: Optional[ContentStatus], to_status: ContentStatus, detail: Optional[str]):
        self.db.add(StatusEvent(content_id=item.id, from_status=from_status, to_status=to_status, detail=detail))
        from_name = from_status.value if from_status is not None else "(new)"
        logging.info(f"🔄 Content {item.id}: {from_name} -> {to_status.value}")

    def start(self, item: ContentItem, detail: Optional[str] = None) -> ContentItem:
        """Registers a new item in the `uploading` state."""
        validate_transition(None, ContentStatus.UPLOADING)
        item.status = ContentStatus.UPLOADING
        self.db.add(item)
        self.db.flush()
        self._record(item, None, ContentStatus.UPLOADING, detail)
        return item

    def transition(
        self,
        item: ContentItem,
        target: ContentStatus,
        detail: Optional[str] = None,
        error: Optional[str] = None,
    ) -> ContentItem:
        current = ContentStatus(item.status)
        validate_transition(current, target)

        # Compare-and-set so a concurrent writer cannot be overwritten.
        now = _utcnow()
        updated = (
            self.db.query(ContentItem)
            .filter(ContentItem.id == item.id, ContentItem.status == current)
            .update({ContentItem.status: target, ContentItem.updated_at: now}, synchronize_session=False)
        )
        if updated != 1:
            raise StaleStatusError(item.id, current)

        item.status = target
        item.updated_at = now
        if target == ContentStatus.FAILED:
            item.error = error or detail or "Unknown error"
        else:
            item.error = None

        self._record(item, current, target, detail if target != ContentStatus.FAILED else item.error)
        return item

    def history(self, content_id: str) -> List[StatusEvent]:
        return (
            self.db.query(StatusEvent)
            .filter(StatusEvent.content_id == content_id)
            .order_by(StatusEvent.id)
            .all()
        )
