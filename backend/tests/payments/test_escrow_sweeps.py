"""Tests for the scheduled escrow and provider-review sweeps.

**Feature: partyrent-payments, Property 8: Timed Transitions**
**Validates: due marketplace escrows are released once, expired reviews are
cancelled, one failing row does not stop the sweep**
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from conftest import in_escrow, in_review, notifications_for
from partyrent.modules.payment_gateway import PayoutError
from partyrent.modules.payments import tasks
from partyrent.modules.payments.exceptions import InvalidStateError
from partyrent.modules.payments.models import PayoutStatus, TransactionStatus
from partyrent.modules.payments.repository import TransactionRepository


S = TransactionStatus


def hours_from_now(hours: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


class TestEscrowSweep:
    """release_due_escrows."""

    async def test_due_escrow_is_released(self, session, payment_service, gateway, marketplace) -> None:
        tx = await in_escrow(payment_service, gateway, marketplace)

        summary = await payment_service.release_due_escrows(now=hours_from_now(25))

        assert summary == {"checked": 1, "released": 1, "degraded": 0, "failed": 0}
        fresh = await TransactionRepository(session).get_or_raise(tx.id)
        assert fresh.status == S.COMPLETED.value
        assert fresh.payout_status == PayoutStatus.SENT.value
        gateway.release_funds.assert_awaited_once_with("CAPTURE-1")

    async def test_escrow_inside_hold_period_is_left_alone(
        self, payment_service, gateway, marketplace
    ) -> None:
        await in_escrow(payment_service, gateway, marketplace)

        summary = await payment_service.release_due_escrows(now=hours_from_now(1))

        assert summary["checked"] == 0
        gateway.release_funds.assert_not_awaited()

    async def test_second_sweep_finds_nothing(self, payment_service, gateway, marketplace) -> None:
        await in_escrow(payment_service, gateway, marketplace)
        await payment_service.release_due_escrows(now=hours_from_now(25))

        summary = await payment_service.release_due_escrows(now=hours_from_now(26))

        assert summary["checked"] == 0
        assert gateway.release_funds.await_count == 1

    async def test_regular_escrow_needs_an_admin(
        self, session, payment_service, gateway, marketplace
    ) -> None:
        marketplace.provider.paypal_can_receive_payments = False
        await session.flush()
        tx = await in_escrow(payment_service, gateway, marketplace)

        summary = await payment_service.release_due_escrows(now=hours_from_now(48))

        assert summary["checked"] == 0
        fresh = await TransactionRepository(session).get_or_raise(tx.id)
        assert fresh.status == S.ESCROW.value

    async def test_failed_fund_release_is_counted_as_degraded(
        self, session, payment_service, gateway, marketplace
    ) -> None:
        tx = await in_escrow(payment_service, gateway, marketplace)
        gateway.release_funds.side_effect = PayoutError("PayPal release_funds failed with HTTP 500")

        summary = await payment_service.release_due_escrows(now=hours_from_now(25))

        assert summary["degraded"] == 1
        fresh = await TransactionRepository(session).get_or_raise(tx.id)
        assert fresh.status == S.COMPLETED.value
        assert fresh.payout_status == PayoutStatus.FAILED.value

    async def test_failing_row_is_counted_and_skipped(
        self, payment_service, gateway, marketplace, monkeypatch
    ) -> None:
        await in_escrow(payment_service, gateway, marketplace)
        monkeypatch.setattr(
            payment_service,
            "release_escrow",
            AsyncMock(side_effect=InvalidStateError("changed concurrently", actual="COMPLETED")),
        )

        summary = await payment_service.release_due_escrows(now=hours_from_now(25))

        assert summary == {"checked": 1, "released": 0, "degraded": 0, "failed": 1}


class TestReviewSweep:
    """expire_provider_reviews."""

    async def test_expired_review_is_cancelled(self, session, payment_service, gateway, marketplace) -> None:
        tx = await in_review(payment_service, marketplace)

        summary = await payment_service.expire_provider_reviews(now=hours_from_now(25))

        assert summary == {"checked": 1, "cancelled": 1, "failed": 0}
        fresh = await TransactionRepository(session).get_or_raise(tx.id)
        assert fresh.status == S.CANCELLED.value
        assert fresh.active_offer_id is None
        gateway.refund_capture.assert_not_awaited()
        for user_id in (marketplace.client.id, marketplace.provider_user.id):
            titles = [n.title for n in await notifications_for(session, user_id)]
            assert "Booking Request Expired" in titles

    async def test_review_before_deadline_is_kept(self, payment_service, marketplace) -> None:
        await in_review(payment_service, marketplace)

        summary = await payment_service.expire_provider_reviews(now=hours_from_now(1))

        assert summary["checked"] == 0


class TestSweepTasks:
    """Celery entry points."""

    def test_release_task_returns_summary(self, monkeypatch) -> None:
        summary = {"checked": 2, "released": 2, "degraded": 0, "failed": 0}
        run_sweep = AsyncMock(return_value=summary)
        monkeypatch.setattr(tasks, "_run_sweep", run_sweep)

        result = tasks.release_due_escrows.apply().get()

        assert result == summary
        run_sweep.assert_awaited_once_with("release_due_escrows")

    def test_review_task_returns_summary(self, monkeypatch) -> None:
        summary = {"checked": 0, "cancelled": 0, "failed": 0}
        run_sweep = AsyncMock(return_value=summary)
        monkeypatch.setattr(tasks, "_run_sweep", run_sweep)

        assert tasks.expire_provider_reviews.apply().get() == summary
        run_sweep.assert_awaited_once_with("expire_provider_reviews")
