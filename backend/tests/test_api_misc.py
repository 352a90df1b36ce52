from fastapi import status
from fastapi.testclient import TestClient

from restohub.core.config import settings
from restohub.models.store import StoreRole

API = settings.api_v1_str


def test_health_endpoints(client: TestClient) -> None:
    assert client.get("/health/live").json() == {"status": "ok"}
    assert client.get("/health/ready").json() == {"status": "ready", "cache": "available"}


def test_trial_endpoints(client: TestClient, owner_context: dict, auth_headers) -> None:
    headers = auth_headers(owner_context["owner"])

    eligibility = client.get(f"{API}/trials/eligibility", headers=headers)
    assert eligibility.json() == {"eligible": True}

    info = client.get(f"{API}/trials/store/{owner_context['store'].id}", headers=headers)
    assert info.status_code == status.HTTP_200_OK
    assert info.json()["isTrialActive"] is False
    assert info.json()["canStartTrial"] is True


def test_audit_log_listing(client: TestClient, owner_context: dict, platform_admin, auth_headers) -> None:
    headers = auth_headers(owner_context["owner"])
    store_id = str(owner_context["store"].id)
    client.post(f"{API}/payment-requests", json={"storeId": store_id, "tier": "STANDARD"}, headers=headers)
    client.post(f"{API}/admin/stores/{store_id}/suspend", json={"reason": "Review"}, headers=auth_headers(platform_admin))

    response = client.get(f"{API}/stores/{store_id}/audit-logs", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["total"] == 2
    assert {item["action"] for item in body["items"]} == {"PAYMENT_REQUEST_CREATED", "ADMIN_STORE_SUSPENDED"}

    filtered = client.get(
        f"{API}/stores/{store_id}/audit-logs",
        params={"action": "ADMIN_STORE_SUSPENDED"},
        headers=headers,
    ).json()
    assert filtered["total"] == 1
    assert filtered["pageSize"] == 50


def test_audit_logs_hidden_from_staff(
    client: TestClient, owner_context: dict, make_user, add_member, auth_headers
) -> None:
    cashier = make_user()
    add_member(cashier, owner_context["store"], StoreRole.CASHIER)

    response = client.get(f"{API}/stores/{owner_context['store'].id}/audit-logs", headers=auth_headers(cashier))

    assert response.status_code == status.HTTP_403_FORBIDDEN
