"""Tests for the transaction state machine.

**Feature: partyrent-payments, Property 5: Transaction State Machine**
**Validates: only listed transitions happen, terminal rows free the offer,
concurrent moves of the same row conflict**
"""

import uuid
from datetime import datetime
from types import SimpleNamespace

import pytest
import pytest_asyncio
from hypothesis import given, settings, strategies as st

from partyrent.modules.booking.models import Offer
from partyrent.modules.payments.exceptions import (
    DuplicateTransactionError,
    InvalidStateError,
)
from partyrent.modules.payments.models import (
    ALLOWED_TRANSITIONS,
    CAPTURED_STATUSES,
    TERMINAL_STATUSES,
    TransactionStatus,
    can_transition,
    sources_for,
)
from partyrent.modules.payments.repository import TransactionRepository


S = TransactionStatus
status_strategy = st.sampled_from(list(TransactionStatus))


class TestTransitionTable:
    """Property tests on the transition table itself."""

    @given(current=status_strategy, target=status_strategy)
    @settings(max_examples=100)
    def test_sources_for_agrees_with_table(
        self, current: TransactionStatus, target: TransactionStatus
    ) -> None:
        assert (current in sources_for(target)) == can_transition(current, target)

    @given(current=status_strategy)
    @settings(max_examples=100)
    def test_no_status_moves_to_itself(self, current: TransactionStatus) -> None:
        assert not can_transition(current, current)

    def test_refunded_is_final(self) -> None:
        assert ALLOWED_TRANSITIONS[S.REFUNDED] == frozenset()

    def test_terminal_statuses_only_lead_to_refunded(self) -> None:
        for status in TERMINAL_STATUSES - {S.REFUNDED}:
            assert ALLOWED_TRANSITIONS[status] == frozenset({S.REFUNDED})

    def test_nothing_returns_to_pending(self) -> None:
        assert sources_for(S.PENDING) == frozenset()

    def test_money_is_only_held_after_capture(self) -> None:
        assert S.PENDING not in CAPTURED_STATUSES
        assert S.PENDING_PAYMENT not in CAPTURED_STATUSES
        assert S.PROVIDER_REVIEW not in CAPTURED_STATUSES


@pytest_asyncio.fixture
async def offer(session, marketplace) -> Offer:
    offer = Offer(
        client_id=marketplace.client.id,
        provider_id=marketplace.provider.id,
        service_id=marketplace.service.id,
        booking_date=datetime(2026, 12, 24, 15, 0),
        hours=2,
        price_cents=20000,
    )
    session.add(offer)
    await session.flush()
    return offer


class TestTransactionRepository:
    """Conditional updates against the database."""

    async def test_create_starts_pending_and_claims_the_offer(self, session, offer) -> None:
        repo = TransactionRepository(session)

        tx = await repo.create(offer.id, 20000, "USD")

        assert tx.status == S.PENDING.value
        assert tx.active_offer_id == offer.id
        assert tx.version == 1
        assert tx.created_at is not None

    async def test_second_live_transaction_is_a_duplicate(self, session, offer) -> None:
        repo = TransactionRepository(session)
        await repo.create(offer.id, 20000, "USD")

        with pytest.raises(DuplicateTransactionError) as exc_info:
            await repo.create(offer.id, 20000, "USD")

        assert exc_info.value.code == "DUPLICATE_TRANSACTION"

    async def test_terminal_transaction_frees_the_offer(self, session, offer) -> None:
        repo = TransactionRepository(session)
        tx = await repo.create(offer.id, 20000, "USD")

        await repo.transition(tx, S.CANCELLED)

        assert tx.status == S.CANCELLED.value
        assert tx.active_offer_id is None
        assert tx.version == 2
        assert await repo.get_active_for_offer(offer.id) is None
        # A fresh checkout for the same offer is allowed again
        retry = await repo.create(offer.id, 20000, "USD")
        assert retry.id != tx.id

    async def test_transition_sets_extra_columns(self, session, offer) -> None:
        repo = TransactionRepository(session)
        tx = await repo.create(offer.id, 20000, "USD")

        await repo.transition(tx, S.PENDING_PAYMENT, payment_intent_id="ORDER-1")

        fresh = await repo.get_by_payment_intent("ORDER-1")
        assert fresh.id == tx.id
        assert fresh.status == S.PENDING_PAYMENT.value

    async def test_disallowed_transition_leaves_row_untouched(self, session, offer) -> None:
        repo = TransactionRepository(session)
        tx = await repo.create(offer.id, 20000, "USD")

        with pytest.raises(InvalidStateError) as exc_info:
            await repo.transition(tx, S.COMPLETED)

        error = exc_info.value
        assert error.code == "INVALID_STATE"
        assert error.actual == "PENDING"
        assert error.expected == sorted(s.value for s in sources_for(S.COMPLETED))
        assert (await repo.get_or_raise(tx.id)).status == S.PENDING.value

    async def test_stale_copy_loses_the_race(self, session, offer) -> None:
        repo = TransactionRepository(session)
        tx = await repo.create(offer.id, 20000, "USD")
        await repo.transition(tx, S.PENDING_PAYMENT)

        # A second request that read the row before the first one moved it
        stale = SimpleNamespace(id=tx.id, status=S.PENDING.value, version=1)
        with pytest.raises(InvalidStateError) as exc_info:
            await repo.transition(stale, S.CANCELLED)

        assert exc_info.value.actual == S.PENDING_PAYMENT.value

    async def test_update_fields_refuses_status(self, session, offer) -> None:
        repo = TransactionRepository(session)
        tx = await repo.create(offer.id, 20000, "USD")

        with pytest.raises(ValueError):
            await repo.update_fields(tx, status=S.COMPLETED.value)

        await repo.update_fields(tx, last_error="boom")
        assert tx.last_error == "boom"
        assert tx.version == 2

    async def test_missing_transaction(self, session) -> None:
        from partyrent.modules.payments.exceptions import TransactionNotFoundError

        with pytest.raises(TransactionNotFoundError):
            await TransactionRepository(session).get_or_raise(uuid.uuid4())
