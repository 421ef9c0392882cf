"""Tests for in-app notifications and the transaction notifier.

**Feature: partyrent-payments, Property 9: Best-Effort Notifications**
**Validates: a failed notification is reported as a warning and never undoes
the change that triggered it**
"""

import uuid
from unittest.mock import AsyncMock

import pytest

from conftest import checkout, notifications_for
from partyrent.core.exceptions import NotFoundError
from partyrent.modules.notification.models import NotificationType
from partyrent.modules.notification.service import NotificationService
from partyrent.modules.payments.notifications import TransactionNotifier


class TestNotificationService:
    """Create, list and read notifications."""

    async def test_create_and_list(self, session, marketplace) -> None:
        service = NotificationService(session)

        await service.create(
            marketplace.client.id, "Hello", "First", NotificationType.BOOKING, {"k": "v"}
        )
        await service.create(marketplace.client.id, "Hello again", "Second")

        items = await service.list_for_user(marketplace.client.id)
        assert {n.title for n in items} == {"Hello", "Hello again"}
        assert await service.count_unread(marketplace.client.id) == 2
        assert await service.count_unread(marketplace.admin.id) == 0

    async def test_mark_as_read(self, session, marketplace) -> None:
        service = NotificationService(session)
        notification = await service.create(marketplace.client.id, "Hello", "First")

        read = await service.mark_as_read(notification.id, marketplace.client.id)

        assert read.is_read
        assert read.read_at.tzinfo is not None
        assert await service.list_for_user(marketplace.client.id, unread_only=True) == []

    async def test_cannot_read_someone_elses_notification(self, session, marketplace) -> None:
        service = NotificationService(session)
        notification = await service.create(marketplace.client.id, "Hello", "First")

        with pytest.raises(NotFoundError):
            await service.mark_as_read(notification.id, marketplace.admin.id)
        with pytest.raises(NotFoundError):
            await service.mark_as_read(uuid.uuid4(), marketplace.client.id)

    async def test_mark_all_as_read(self, session, marketplace) -> None:
        service = NotificationService(session)
        for title in ("One", "Two", "Three"):
            await service.create(marketplace.client.id, title, title)

        assert await service.mark_all_as_read(marketplace.client.id) == 3
        assert await service.count_unread(marketplace.client.id) == 0

    async def test_notify_admins_reaches_active_admins_only(self, session, marketplace) -> None:
        from partyrent.modules.booking.models import User, UserRole

        retired = User(
            email="retired@example.com", role=UserRole.ADMIN.value, is_active=False
        )
        session.add(retired)
        await session.flush()

        sent = await NotificationService(session).notify_admins("Alert", "Something broke")

        assert sent == 1
        assert [n.title for n in await notifications_for(session, marketplace.admin.id)] == ["Alert"]
        assert await notifications_for(session, retired.id) == []


class TestTransactionNotifier:
    """Notifications emitted for transaction events."""

    async def test_sent_notification_returns_no_warning(
        self, session, payment_service, marketplace
    ) -> None:
        tx = await checkout(payment_service, marketplace)
        notifier = TransactionNotifier(session)

        warning = await notifier.notify_new_request(marketplace.provider_user.id, tx)

        assert warning is None
        [notification] = await notifications_for(session, marketplace.provider_user.id)
        assert notification.type == NotificationType.SYSTEM.value
        assert notification.data["transactionId"] == str(tx.id)
        assert "USD 100.00" in notification.content

    async def test_failure_becomes_a_warning(
        self, session, payment_service, marketplace, monkeypatch
    ) -> None:
        tx = await checkout(payment_service, marketplace)
        monkeypatch.setattr(
            NotificationService, "create", AsyncMock(side_effect=RuntimeError("disk full"))
        )

        warning = await TransactionNotifier(session).notify_refunded(marketplace.client.id, tx)

        assert warning.startswith("refund notification not sent")
        assert "disk full" in warning

    async def test_failed_insert_is_rolled_back_alone(
        self, session, payment_service, marketplace, monkeypatch
    ) -> None:
        tx = await checkout(payment_service, marketplace)
        notifier = TransactionNotifier(session)

        async def broken_create(self, user_id, title, content, type=None, data=None):
            # title is NOT NULL
            return await self.repository.create(
                user_id=user_id, type="SYSTEM", title=None, content=content
            )

        monkeypatch.setattr(NotificationService, "create", broken_create)

        warning = await notifier.notify_approved(marketplace.client.id, tx)

        assert warning.startswith("approval notification not sent")
        fresh = await payment_service.transactions.get_or_raise(tx.id)
        assert fresh.status == tx.status
        assert await notifications_for(session, marketplace.client.id) == []

    async def test_cancellation_reaches_every_party(
        self, session, payment_service, marketplace
    ) -> None:
        tx = await checkout(payment_service, marketplace)

        warnings = await TransactionNotifier(session).notify_cancelled(
            [marketplace.client.id, marketplace.provider_user.id], tx
        )

        assert warnings == []
        for user_id in (marketplace.client.id, marketplace.provider_user.id):
            titles = [n.title for n in await notifications_for(session, user_id)]
            assert titles == ["Booking Cancelled"]

    async def test_declined_mentions_refund(self, session, payment_service, marketplace) -> None:
        tx = await checkout(payment_service, marketplace)

        await TransactionNotifier(session).notify_declined(marketplace.client.id, tx, refunded=True)

        [notification] = await notifications_for(session, marketplace.client.id)
        assert "has been refunded" in notification.content
        assert "USD 105.00" in notification.content
