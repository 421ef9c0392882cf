"""HTTP API tests against the FastAPI app.

**Feature: partyrent-payments, Property 10: Error Envelope**
**Validates: every failure is returned as {success, code, error, details}
with the status code matching the error kind**
"""

import uuid

import httpx
import pytest_asyncio

from conftest import BOOKING_DATE, in_escrow, make_capture
from partyrent.core.database import get_session
from partyrent.core.security import create_access_token, create_onboarding_state
from partyrent.main import app
from partyrent.modules.notification.service import NotificationService
from partyrent.modules.payment_gateway import set_payment_gateway


@pytest_asyncio.fixture
async def api(session, gateway):
    async def override_get_session():
        yield session
        await session.flush()

    app.dependency_overrides[get_session] = override_get_session
    set_payment_gateway(gateway)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def auth(user) -> dict:
    token = create_access_token(user.id, user.role)
    return {"Authorization": f"Bearer {token}"}


def assert_error(response: httpx.Response, status_code: int, code: str) -> dict:
    assert response.status_code == status_code, response.text
    body = response.json()
    assert body["success"] is False
    assert body["code"] == code
    assert isinstance(body["error"], str) and body["error"]
    assert "details" in body
    return body


async def create_payment(api, marketplace, **extra) -> dict:
    payload = {
        "serviceId": str(marketplace.service.id),
        "bookingDate": BOOKING_DATE.isoformat(),
        "hours": 2,
        **extra,
    }
    response = await api.post(
        "/api/v1/payments/create", json=payload, headers=auth(marketplace.client)
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestHealthAndAuth:
    async def test_health(self, api) -> None:
        response = await api.get("/health")
        assert response.json() == {"status": "healthy"}

    async def test_missing_token(self, api) -> None:
        response = await api.get(f"/api/v1/transactions/{uuid.uuid4()}")
        assert_error(response, 401, "UNAUTHORIZED")

    async def test_garbage_token(self, api) -> None:
        response = await api.get(
            "/api/v1/notifications", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert_error(response, 401, "UNAUTHORIZED")

    async def test_admin_routes_reject_clients(self, api, marketplace) -> None:
        response = await api.get("/api/v1/admin/fee-settings", headers=auth(marketplace.client))
        assert_error(response, 403, "FORBIDDEN")


class TestPaymentEndpoints:
    async def test_create_payment(self, api, marketplace, gateway) -> None:
        body = await create_payment(api, marketplace, guestCount=30)

        assert body["success"] is True
        assert body["paymentFlow"] == "MARKETPLACE"
        assert body["totalClientPaysCents"] == 21000
        assert body["approvalUrl"].startswith("https://www.sandbox.paypal.com/checkoutnow")
        uuid.UUID(body["transactionId"])
        gateway.create_marketplace_order.assert_awaited_once()

    async def test_create_payment_validation(self, api, marketplace) -> None:
        response = await api.post(
            "/api/v1/payments/create",
            json={"serviceId": str(marketplace.service.id), "hours": 0},
            headers=auth(marketplace.client),
        )

        body = assert_error(response, 422, "VALIDATION_ERROR")
        fields = {tuple(error["loc"])[-1] for error in body["details"]["errors"]}
        assert {"bookingDate", "hours"} <= fields

    async def test_authorize_accepts_paypal_field_name(self, api, marketplace) -> None:
        created = await create_payment(api, marketplace)

        response = await api.post(
            "/api/v1/payments/authorize",
            json={"orderID": created["orderId"]},
            headers=auth(marketplace.client),
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["status"] == "PROVIDER_REVIEW"
        assert body["reviewDeadline"] is not None

    async def test_capture_then_read_transaction(self, api, marketplace, gateway) -> None:
        created = await create_payment(api, marketplace)
        gateway.capture_order.return_value = make_capture(
            created["orderId"], created["totalClientPaysCents"]
        )

        captured = await api.post(
            "/api/v1/payments/capture",
            json={"orderId": created["orderId"]},
            headers=auth(marketplace.client),
        )
        assert captured.status_code == 200, captured.text
        assert captured.json()["captureId"] == "CAPTURE-1"

        response = await api.get(
            f"/api/v1/transactions/{created['transactionId']}",
            headers=auth(marketplace.provider_user),
        )
        assert response.status_code == 200, response.text
        transaction = response.json()
        assert transaction["status"] == "PAID_PENDING_PROVIDER_ACCEPTANCE"
        assert transaction["amountCents"] == 20000
        assert transaction["providerReceivesCents"] == 17600
        assert transaction["platformFeeCents"] == 3400

    async def test_unknown_transaction(self, api, marketplace) -> None:
        response = await api.get(
            f"/api/v1/transactions/{uuid.uuid4()}", headers=auth(marketplace.admin)
        )
        assert_error(response, 404, "NOT_FOUND")

    async def test_approve_and_conflicting_second_approval(self, api, marketplace, gateway) -> None:
        created = await create_payment(api, marketplace)
        gateway.capture_order.return_value = make_capture(
            created["orderId"], created["totalClientPaysCents"]
        )
        await api.post(
            "/api/v1/payments/authorize",
            json={"orderID": created["orderId"]},
            headers=auth(marketplace.client),
        )
        url = f"/api/v1/transactions/{created['transactionId']}/approve"

        approved = await api.post(url, headers=auth(marketplace.provider_user))
        assert approved.status_code == 200, approved.text
        body = approved.json()
        assert body["transaction"]["status"] == "ESCROW"
        assert body["escrowEndTime"] is not None
        assert body["degraded"] is False

        again = await api.post(url, headers=auth(marketplace.provider_user))
        assert_error(again, 409, "INVALID_STATE")

    async def test_admin_release(self, session, api, marketplace, gateway, payment_service) -> None:
        transaction = await in_escrow(payment_service, gateway, marketplace)

        response = await api.post(
            f"/api/v1/admin/transactions/{transaction.id}/release",
            headers=auth(marketplace.admin),
        )

        assert response.status_code == 200, response.text
        assert response.json()["transaction"]["status"] == "COMPLETED"
        gateway.release_funds.assert_awaited_once_with("CAPTURE-1")


class TestFeeSettingsEndpoints:
    async def test_read_and_update(self, api, marketplace) -> None:
        headers = auth(marketplace.admin)

        current = await api.get("/api/v1/admin/fee-settings", headers=headers)
        assert current.json()["data"] == {"clientFeePercent": 5.0, "providerFeePercent": 12.0}

        updated = await api.post(
            "/api/v1/admin/fee-settings",
            json={"clientFeePercent": "7.5%"},
            headers=headers,
        )
        assert updated.status_code == 200, updated.text
        assert updated.json()["message"] == "Fee settings updated successfully"
        assert updated.json()["data"] == {"clientFeePercent": 7.5, "providerFeePercent": 12.0}

    async def test_out_of_range_update(self, api, marketplace) -> None:
        response = await api.post(
            "/api/v1/admin/fee-settings",
            json={"providerFeePercent": 150},
            headers=auth(marketplace.admin),
        )
        assert_error(response, 400, "VALIDATION_ERROR")


class TestPayPalAccountEndpoints:
    async def test_status(self, api, marketplace) -> None:
        response = await api.get("/api/v1/paypal/status", headers=auth(marketplace.provider_user))

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["paypalMerchantId"] == "MERCHANT123"
        assert body["marketplaceEligible"] is True

    async def test_callback_redirects_to_dashboard(self, api, marketplace) -> None:
        # Browser redirect from PayPal: no Authorization header
        response = await api.get(
            "/api/v1/paypal/callback",
            params={
                "state": create_onboarding_state(marketplace.provider.id),
                "merchantId": str(marketplace.provider.id),
                "merchantIdInPayPal": "MERCHANT123",
                "permissionsGranted": "true",
                "consentStatus": "true",
            },
        )

        assert response.status_code == 302
        assert response.headers["location"].endswith(
            "/provider/dashboard/paypal?status=success"
        )

    async def test_callback_without_valid_state_goes_to_sign_in(
        self, session, api, marketplace
    ) -> None:
        response = await api.get(
            "/api/v1/paypal/callback",
            params={
                "state": "forged",
                "merchantIdInPayPal": "ATTACKER",
                "permissionsGranted": "true",
            },
        )

        assert response.status_code == 302
        assert "/auth/signin" in response.headers["location"]
        await session.refresh(marketplace.provider)
        assert marketplace.provider.paypal_merchant_id == "MERCHANT123"

    async def test_client_has_no_paypal_account(self, api, marketplace) -> None:
        response = await api.get("/api/v1/paypal/status", headers=auth(marketplace.client))
        assert_error(response, 404, "NOT_FOUND")


class TestNotificationEndpoints:
    async def test_list_and_mark_read(self, session, api, marketplace) -> None:
        service = NotificationService(session)
        first = await service.create(marketplace.client.id, "One", "First")
        await service.create(marketplace.client.id, "Two", "Second")
        headers = auth(marketplace.client)

        listed = await api.get("/api/v1/notifications", headers=headers)
        assert listed.json()["unreadCount"] == 2
        assert {n["title"] for n in listed.json()["items"]} == {"One", "Two"}

        read = await api.post(f"/api/v1/notifications/{first.id}/read", headers=headers)
        assert read.json()["isRead"] is True

        unread = await api.get("/api/v1/notifications", params={"unreadOnly": "true"}, headers=headers)
        assert [n["title"] for n in unread.json()["items"]] == ["Two"]

        cleared = await api.post("/api/v1/notifications/read-all", headers=headers)
        assert cleared.json() == {"success": True, "updated": 1}

    async def test_other_users_notification(self, session, api, marketplace) -> None:
        notification = await NotificationService(session).create(
            marketplace.client.id, "Private", "Not yours"
        )

        response = await api.post(
            f"/api/v1/notifications/{notification.id}/read", headers=auth(marketplace.admin)
        )
        assert_error(response, 404, "NOT_FOUND")
