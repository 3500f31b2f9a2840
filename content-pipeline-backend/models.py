# models.py

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from status import ContentStatus


def _utcnow():
    return datetime.now(timezone.utc)


def _new_id():
    return str(uuid.uuid4())


# Stored as the lowercase value, not the member name.
StatusColumn = Enum(
    ContentStatus,
    name="content_status",
    native_enum=False,
    validate_strings=True,
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class ContentItem(Base):
    """A piece of uploaded content tracked through the pipeline."""

    __tablename__ = "content_items"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    filename = Column(String, nullable=False)
    content_type = Column(String, nullable=True)
    kind = Column(String, nullable=False)  # video, audio, image
    status = Column(StatusColumn, nullable=False, index=True)
    storage_path = Column(String, nullable=True)
    size_bytes = Column(Integer, nullable=True)
    checksum = Column(String(64), nullable=True)
    source_url = Column(String, nullable=True)
    media_info = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    derivatives = relationship(
        "Derivative",
        back_populates="content",
        cascade="all, delete-orphan",
        order_by="Derivative.kind",
    )
    events = relationship(
        "StatusEvent",
        back_populates="content",
        cascade="all, delete-orphan",
        order_by="StatusEvent.id",
    )


class Derivative(Base):
    """An artifact produced from a content item once it is processed."""

    __tablename__ = "derivatives"
    __table_args__ = (UniqueConstraint("content_id", "kind", name="uq_derivative_content_kind"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    content_id = Column(String, ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String, nullable=False)  # optimized, thumbnail, preview, waveform
    path = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    size_bytes = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    content = relationship("ContentItem", back_populates="derivatives")


class StatusEvent(Base):
    """One applied status transition."""

    __tablename__ = "status_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    content_id = Column(String, ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = Column(StatusColumn, nullable=True)
    to_status = Column(StatusColumn, nullable=False)
    detail = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    content = relationship("ContentItem", back_populates="events")
