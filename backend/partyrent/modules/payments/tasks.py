"""Celery tasks for scheduled payment work.

Both sweeps run on the beat schedule configured in ``partyrent.core.celery_app``.
"""

import asyncio
import logging
import uuid

from partyrent.core.celery_app import celery_app
from partyrent.core.database import async_session_maker, engine
from partyrent.core.logging import clear_correlation_id, set_correlation_id

logger = logging.getLogger(__name__)


async def _run_sweep(name: str) -> dict:
    from partyrent.modules.payments.service import PaymentService

    set_correlation_id(f"{name}-{uuid.uuid4()}")
    try:
        async with async_session_maker() as session:
            service = PaymentService(session)
            if name == "release_due_escrows":
                return await service.release_due_escrows()
            return await service.expire_provider_reviews()
    finally:
        # Pooled connections belong to this event loop
        await engine.dispose()
        clear_correlation_id()


@celery_app.task(
    name="payments.release_due_escrows",
    bind=True,
    max_retries=3,
    default_retry_delay=60,
)
def release_due_escrows(self) -> dict:
    """Complete marketplace escrows whose hold period has ended.

    Returns:
        dict: Sweep summary (checked, released, degraded, failed)
    """
    try:
        return asyncio.run(_run_sweep("release_due_escrows"))
    except Exception as exc:
        logger.error(f"Escrow release sweep failed: {exc}")
        raise self.retry(exc=exc)


@celery_app.task(
    name="payments.expire_provider_reviews",
    bind=True,
    max_retries=3,
    default_retry_delay=60,
)
def expire_provider_reviews(self) -> dict:
    """Cancel bookings the provider did not review before the deadline."""
    try:
        return asyncio.run(_run_sweep("expire_provider_reviews"))
    except Exception as exc:
        logger.error(f"Provider review sweep failed: {exc}")
        raise self.retry(exc=exc)
