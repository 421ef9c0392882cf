"""Pydantic schemas for notification endpoints."""

import uuid
from datetime import datetime
from typing import Optional

from partyrent.core.schemas import CamelModel


class NotificationResponse(CamelModel):
    id: uuid.UUID
    type: str
    title: str
    content: str
    is_read: bool
    data: Optional[dict] = None
    created_at: Optional[datetime] = None


class NotificationListResponse(CamelModel):
    items: list[NotificationResponse]
    unread_count: int


class MarkAllReadResponse(CamelModel):
    success: bool = True
    updated: int
