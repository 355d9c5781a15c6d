"""API tests for the HTTP surface: status codes, error envelopes and authorization."""
from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient

from booking_billing.api.deps import get_current_user
from booking_billing.auth.rbac import AuthContext
from booking_billing.main import app
from booking_billing.models.plan import Plan
from utils.fakes import DECLINED, FakePaymentGateway, FakeUsageReader


def _act_as(auth: AuthContext) -> None:
    app.dependency_overrides[get_current_user] = lambda: auth


async def _subscribe(client: AsyncClient, business_id, plan_id, **extra) -> dict:
    response = await client.post(
        "/v1/subscriptions",
        json={"business_id": str(business_id), "plan_id": str(plan_id), "payment_method_id": "pm_card", **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health_and_root(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

    response = await async_client.get("/")
    assert response.json()["service"] == "Booking Billing"


@pytest.mark.asyncio
async def test_request_id_is_echoed(async_client: AsyncClient) -> None:
    response = await async_client.get("/health", headers={"X-Request-ID": "req_fromclient"})
    assert response.headers["X-Request-ID"] == "req_fromclient"

    response = await async_client.get("/health")
    assert response.headers["X-Request-ID"].startswith("req_")


@pytest.mark.asyncio
async def test_list_and_get_plans(async_client: AsyncClient, basic_plan: Plan, pro_plan: Plan) -> None:
    response = await async_client.get("/v1/plans")
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert [item["name"] for item in body["items"]] == ["basic", "pro"]

    response = await async_client.get(f"/v1/plans/{pro_plan.id}")
    assert Decimal(response.json()["price"]) == Decimal("300")

    response = await async_client.get(f"/v1/plans/{uuid4()}")
    assert response.status_code == 404
    assert response.json()["error_code"] == "plan_not_found"


@pytest.mark.asyncio
async def test_subscribe_and_read_back(async_client: AsyncClient, business_id, basic_plan: Plan) -> None:
    body = await _subscribe(async_client, business_id, basic_plan.id)

    assert body["status"] == "active"
    assert body["plan"]["name"] == "basic"
    assert body["pending_discount"] is None

    response = await async_client.get(f"/v1/subscriptions/{business_id}")
    assert response.status_code == 200
    assert response.json()["id"] == body["id"]

    response = await async_client.get(f"/v1/subscriptions/{business_id}/payments")
    payments = response.json()
    assert len(payments) == 1
    assert payments[0]["payment_type"] == "initial"
    assert Decimal(payments[0]["amount"]) == Decimal("100")

    response = await async_client.get(f"/v1/subscriptions/{business_id}/history")
    assert response.json()[0]["event_type"] == "subscription_created"


@pytest.mark.asyncio
async def test_duplicate_subscription_conflicts(async_client: AsyncClient, business_id, basic_plan: Plan) -> None:
    await _subscribe(async_client, business_id, basic_plan.id)

    response = await async_client.post(
        "/v1/subscriptions", json={"business_id": str(business_id), "plan_id": str(basic_plan.id)}
    )

    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "subscription_already_active"
    assert body["remediation"]
    assert body["request_id"].startswith("req_")


@pytest.mark.asyncio
async def test_declined_payment_returns_402(
    async_client: AsyncClient, gateway: FakePaymentGateway, business_id, basic_plan: Plan
) -> None:
    plan_id = basic_plan.id
    gateway.script(DECLINED)

    response = await async_client.post(
        "/v1/subscriptions",
        json={"business_id": str(business_id), "plan_id": str(plan_id), "payment_method_id": "pm_card"},
    )

    assert response.status_code == 402
    assert response.json()["error_code"] == "payment_failed"
    assert response.json()["context"]["failure_reason"] == DECLINED

    response = await async_client.get(f"/v1/subscriptions/{business_id}")
    assert response.status_code == 404
    assert response.json()["error_code"] == "subscription_not_found"


@pytest.mark.asyncio
async def test_other_business_is_forbidden(async_client: AsyncClient, basic_plan: Plan) -> None:
    response = await async_client.post(
        "/v1/subscriptions",
        json={"business_id": str(uuid4()), "plan_id": str(basic_plan.id), "payment_method_id": "pm_card"},
    )

    assert response.status_code == 403
    assert response.json()["error_code"] == "insufficient_permissions"


@pytest.mark.asyncio
async def test_malformed_request_returns_422(async_client: AsyncClient) -> None:
    response = await async_client.post("/v1/subscriptions", json={"business_id": "not-a-uuid"})

    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "validation_error"
    fields = {detail["field"] for detail in body["details"]}
    assert "body.business_id" in fields
    assert "body.plan_id" in fields


@pytest.mark.asyncio
async def test_cancel_and_reactivate(async_client: AsyncClient, business_id, basic_plan: Plan) -> None:
    await _subscribe(async_client, business_id, basic_plan.id)

    response = await async_client.post(f"/v1/subscriptions/{business_id}/cancel", json={"reason": "moving"})
    assert response.status_code == 200
    assert response.json()["status"] == "canceled"
    assert response.json()["cancel_at_period_end"] is True

    response = await async_client.post(f"/v1/subscriptions/{business_id}/reactivate")
    assert response.status_code == 200
    assert response.json()["status"] == "active"

    response = await async_client.post(f"/v1/subscriptions/{business_id}/cancel", json={"at_period_end": False})
    assert response.json()["cancel_at_period_end"] is False

    response = await async_client.post(f"/v1/subscriptions/{business_id}/reactivate")
    assert response.status_code == 409
    assert response.json()["error_code"] == "invalid_state_transition"


@pytest.mark.asyncio
async def test_downgrade_over_capacity_returns_violations(
    async_client: AsyncClient, usage_reader: FakeUsageReader, business_id, basic_plan: Plan, pro_plan: Plan
) -> None:
    basic_plan_id = basic_plan.id
    await _subscribe(async_client, business_id, pro_plan.id)
    usage_reader.set(businesses=1, staff=7)

    response = await async_client.post(
        f"/v1/subscriptions/{business_id}/downgrade", json={"new_plan_id": str(basic_plan_id)}
    )

    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "capacity_exceeded"
    assert [detail["message"] for detail in body["details"]] == ["staff: 7 in use, plan allows 5"]

    usage_reader.set(businesses=1, staff=4)
    response = await async_client.post(
        f"/v1/subscriptions/{business_id}/downgrade", json={"new_plan_id": str(basic_plan_id)}
    )
    assert response.status_code == 200
    assert response.json()["pending_plan_id"] == str(basic_plan_id)


@pytest.mark.asyncio
async def test_preview_and_upgrade(
    async_client: AsyncClient, gateway: FakePaymentGateway, business_id, basic_plan: Plan, pro_plan: Plan
) -> None:
    await _subscribe(async_client, business_id, basic_plan.id)

    response = await async_client.post(
        f"/v1/subscriptions/{business_id}/preview-change", json={"new_plan_id": str(pro_plan.id)}
    )
    assert response.status_code == 200
    preview = response.json()
    assert preview["change_type"] == "upgrade"
    assert preview["effective"] == "immediate"

    response = await async_client.post(f"/v1/subscriptions/{business_id}/upgrade", json={"new_plan_id": str(pro_plan.id)})
    assert response.status_code == 200
    assert response.json()["plan"]["name"] == "pro"
    assert len(gateway.calls) == 2


@pytest.mark.asyncio
async def test_discount_code_admin_flow(
    async_client: AsyncClient, owner: AuthContext, admin: AuthContext, business_id, trial_plan: Plan
) -> None:
    trial_plan_id = trial_plan.id
    payload = {"code": "spring25", "discount_type": "percentage", "discount_value": "25", "max_usages": 10}

    response = await async_client.post("/v1/discount-codes", json=payload)
    assert response.status_code == 403

    _act_as(admin)
    response = await async_client.post("/v1/discount-codes", json=payload)
    assert response.status_code == 201
    code_id = response.json()["id"]
    assert response.json()["code"] == "SPRING25"

    response = await async_client.post("/v1/discount-codes", json=payload)
    assert response.status_code == 409

    response = await async_client.post(
        "/v1/discount-codes", json={**payload, "code": "TOOMUCH", "discount_value": "150"}
    )
    assert response.status_code == 400
    assert response.json()["error_code"] == "value_too_large"

    _act_as(owner)
    response = await async_client.post(
        "/v1/discount-codes/validate", json={"code": "Spring25", "plan_id": str(trial_plan_id)}
    )
    assert response.status_code == 200
    result = response.json()
    assert result["valid"] is True
    assert Decimal(result["final_amount"]) == Decimal("75")

    response = await async_client.post(
        "/v1/discount-codes/validate", json={"code": "nope", "plan_id": str(trial_plan_id)}
    )
    assert response.status_code == 200
    assert response.json() == {
        "valid": False,
        "reason": "not_found",
        "code": "NOPE",
        "discount_type": None,
        "discount_value": None,
        "original_amount": None,
        "discount_amount": None,
        "final_amount": None,
    }

    subscription = await _subscribe(async_client, business_id, trial_plan_id)
    response = await async_client.post(f"/v1/subscriptions/{business_id}/discount", json={"code": "spring25"})
    assert response.status_code == 200
    assert response.json()["pending_discount"]["code"] == "SPRING25"
    assert response.json()["id"] == subscription["id"]

    _act_as(admin)
    response = await async_client.post(f"/v1/discount-codes/{code_id}/deactivate")
    assert response.json()["is_active"] is False
    response = await async_client.delete(f"/v1/discount-codes/{code_id}")
    assert response.status_code == 409
    response = await async_client.get("/v1/discount-codes", params={"active_only": True})
    assert response.json()["total"] == 0


@pytest.mark.asyncio
async def test_admin_endpoints(
    async_client: AsyncClient, admin: AuthContext, business_id, basic_plan: Plan, trial_plan: Plan
) -> None:
    await _subscribe(async_client, business_id, basic_plan.id)

    response = await async_client.get("/v1/subscriptions/stats")
    assert response.status_code == 403
    response = await async_client.post("/v1/renewals/run")
    assert response.status_code == 403

    _act_as(admin)
    await _subscribe(async_client, uuid4(), trial_plan.id)
    response = await async_client.get("/v1/subscriptions/stats")
    assert response.status_code == 200
    stats = response.json()
    assert stats["total"] == 2
    assert stats["by_status"]["trial"] == 1
    assert Decimal(stats["mrr"]["TRY"]) == Decimal("100")

    response = await async_client.get("/v1/subscriptions/trials/ending-soon", params={"days": 30})
    assert len(response.json()) == 1

    response = await async_client.post("/v1/renewals/run")
    assert response.status_code == 200
    assert response.json()["processed"] == 0


@pytest.mark.asyncio
async def test_auto_renewal_and_payment_method(async_client: AsyncClient, business_id, trial_plan: Plan) -> None:
    response = await async_client.post(
        "/v1/subscriptions",
        json={"business_id": str(business_id), "plan_id": str(trial_plan.id), "auto_renewal": False},
    )
    assert response.status_code == 201

    response = await async_client.patch(f"/v1/subscriptions/{business_id}/auto-renewal", json={"enabled": True})
    assert response.status_code == 400
    assert response.json()["error_code"] == "missing_required_field"

    response = await async_client.patch(f"/v1/subscriptions/{business_id}/payment-method", json={"payment_method_id": "pm_new"})
    assert response.status_code == 200

    response = await async_client.patch(f"/v1/subscriptions/{business_id}/auto-renewal", json={"enabled": True})
    assert response.status_code == 200
    assert response.json()["auto_renewal"] is True

    response = await async_client.post(f"/v1/subscriptions/{business_id}/convert-trial", json={})
    assert response.status_code == 200
    assert response.json()["status"] == "active"
