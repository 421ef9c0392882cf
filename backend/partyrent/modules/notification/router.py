"""Notification endpoints for the signed-in user."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from partyrent.core.database import get_session
from partyrent.core.security import CurrentUser, get_current_user
from partyrent.modules.notification.schemas import (
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
)
from partyrent.modules.notification.service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
):
    service = NotificationService(session)
    items = await service.list_for_user(user.id, unread_only, limit, offset)
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in items],
        unread_count=await service.count_unread(user.id),
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
):
    service = NotificationService(session)
    notification = await service.mark_as_read(notification_id, user.id)
    return NotificationResponse.model_validate(notification)


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(get_current_user),
):
    service = NotificationService(session)
    updated = await service.mark_all_as_read(user.id)
    return MarkAllReadResponse(updated=updated)
