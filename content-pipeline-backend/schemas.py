"""
Pydantic models for data validation in the Content Pipeline Backend.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, HttpUrl

from status import ContentStatus


class RemoteContentRequest(BaseModel):
    """Request model for ingesting content from a remote URL."""
    url: HttpUrl
    filename: Optional[str] = None


class ContentJobResponse(BaseModel):
    """Response when content is accepted and queued."""
    content_id: str
    status: ContentStatus


class StatusResponse(BaseModel):
    """Response for checking a content item's status."""
    content_id: str
    status: ContentStatus
    error: Optional[str] = None
    attempts: int = 0


class DerivativeResponse(BaseModel):
    """A derivative and where to download it."""
    kind: str
    mime_type: str
    size_bytes: Optional[int] = None
    url: str


class StatusEventResponse(BaseModel):
    """One applied status transition, oldest first in a history."""

    model_config = ConfigDict(from_attributes=True)

    from_status: Optional[ContentStatus] = None
    to_status: ContentStatus
    detail: Optional[str] = None
    created_at: datetime


class ContentResponse(BaseModel):
    """Full view of a content item."""
    id: str
    filename: str
    content_type: Optional[str] = None
    kind: str
    status: ContentStatus
    size_bytes: Optional[int] = None
    checksum: Optional[str] = None
    source_url: Optional[str] = None
    media_info: Optional[dict] = None
    error: Optional[str] = None
    attempts: int = 0
    created_at: datetime
    updated_at: datetime
    derivatives: List[DerivativeResponse] = []


class ContentListResponse(BaseModel):
    """A page of content items plus the total matching the filters."""
    items: List[ContentResponse]
    total: int
    limit: int
    offset: int
