from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

TENANT = {"X-Tenant-ID": "shop-1"}


def _create(client: TestClient, headers: dict[str, str] = TENANT, **body) -> dict:
    payload = {"code": "SAVE10", "type": "PERCENT", "value": 10, "active": True}
    payload.update(body)
    res = client.post("/api/v1/coupons", json=payload, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def test_create_returns_camel_case_coupon(client: TestClient) -> None:
    body = _create(client, code="spring", maxDiscountAmount=5, minPurchaseAmount=20, applicableServices=["svc-1"])
    assert body["code"] == "SPRING"
    assert body["type"] == "PERCENT"
    assert body["value"] == 10.0
    assert body["maxDiscountAmount"] == 5.0
    assert body["minPurchaseAmount"] == 20.0
    assert body["usageCount"] == 0
    assert body["usageLimit"] is None
    assert body["applicableServices"] == ["svc-1"]
    assert body["tenantId"] == "shop-1"
    assert body["expiresAt"]


def test_type_literals_are_case_sensitive(client: TestClient) -> None:
    res = client.post("/api/v1/coupons", json={"code": "X", "type": "fixed", "value": 1}, headers=TENANT)
    assert res.status_code == 422


def test_coupons_are_isolated_by_tenant_header(client: TestClient) -> None:
    created = _create(client)
    assert client.get(f"/api/v1/coupons/{created['id']}", headers={"X-Tenant-ID": "shop-2"}).status_code == 404
    assert client.get("/api/v1/coupons/code/SAVE10").status_code == 404
    assert client.get("/api/v1/coupons/code/save10", headers=TENANT).json()["id"] == created["id"]


def test_update_and_delete(client: TestClient) -> None:
    created = _create(client, type="FIXED", value=5)
    res = client.put(f"/api/v1/coupons/{created['id']}", json={"value": 7.5, "description": "Seven fifty"}, headers=TENANT)
    assert res.status_code == 200
    assert res.json()["value"] == 7.5
    assert res.json()["description"] == "Seven fifty"
    assert res.json()["type"] == "FIXED"

    assert client.delete(f"/api/v1/coupons/{created['id']}", headers=TENANT).status_code == 204
    assert client.get(f"/api/v1/coupons/{created['id']}", headers=TENANT).status_code == 404


def test_usage_count_is_not_writable(client: TestClient) -> None:
    created = _create(client)
    res = client.put(f"/api/v1/coupons/{created['id']}", json={"usageCount": 9}, headers=TENANT)
    assert res.status_code == 200
    assert res.json()["usageCount"] == 0


def test_list_with_stats_and_pagination(client: TestClient) -> None:
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    _create(client, code="A1", type="FIXED", value=5)
    _create(client, code="A2")
    _create(client, code="A3", expiresAt=past)
    _create(client, code="OTHER", headers={"X-Tenant-ID": "shop-2"})

    res = client.get("/api/v1/coupons", params={"limit": 2}, headers=TENANT)
    assert res.status_code == 200
    body = res.json()
    assert len(body["data"]) == 2
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}
    assert body["stats"] == {
        "totalCoupons": 3,
        "activeCoupons": 2,
        "usedCoupons": 0,
        "unusedCoupons": 3,
        "expiredCoupons": 1,
    }

    fixed = client.get("/api/v1/coupons", params={"type": "FIXED"}, headers=TENANT).json()
    assert [c["code"] for c in fixed["data"]] == ["A1"]
    expired = client.get("/api/v1/coupons", params={"status": "expired"}, headers=TENANT).json()
    assert [c["code"] for c in expired["data"]] == ["A3"]

    stats = client.get("/api/v1/coupons/stats", headers=TENANT).json()
    assert stats["totalCoupons"] == 3


def test_validate_scenarios(client: TestClient) -> None:
    _create(client, code="CAP5", maxDiscountAmount=5)
    _create(client, code="FLAT25", type="FIXED", value=25)
    _create(client, code="MIN50", type="FIXED", value=5, minPurchaseAmount=50)
    _create(client, code="SVC1", type="FIXED", value=5, applicableServices=["svc-1"])

    def validate(body: dict) -> dict:
        res = client.post("/api/v1/coupons/validate", json=body, headers=TENANT)
        assert res.status_code == 200, res.text
        return res.json()

    capped = validate({"code": "cap5", "subtotal": 100})
    assert capped == {"code": "CAP5", "eligible": True, "reason": None, "discount": 5.0, "total": 95.0}

    clamped = validate({"code": "FLAT25", "subtotal": 10})
    assert clamped["discount"] == 10.0
    assert clamped["total"] == 0.0

    below = validate({"code": "MIN50", "subtotal": 40})
    assert below["eligible"] is False
    assert below["reason"] == "BELOW_MIN_PURCHASE"
    assert below["discount"] is None

    wrong_service = validate({"code": "SVC1", "subtotal": 30, "serviceIds": ["svc-2"]})
    assert wrong_service["reason"] == "SERVICE_NOT_APPLICABLE"
    from_items = validate(
        {"code": "SVC1", "items": [{"price": 10, "quantity": 2, "serviceId": "svc-2"}, {"price": 5, "serviceId": "svc-1"}]}
    )
    assert from_items["eligible"] is True
    assert from_items["total"] == 20.0


def test_validate_unknown_code(client: TestClient) -> None:
    res = client.post("/api/v1/coupons/validate", json={"code": "NOPE", "subtotal": 10}, headers=TENANT)
    assert res.status_code == 404
    assert res.json()["detail"] == "Invalid coupon code"


def test_redeem_then_limit_reached(client: TestClient) -> None:
    created = _create(client, code="ONCE", type="FIXED", value=5, usageLimit=1)

    first = client.post("/api/v1/coupons/redeem", json={"code": "ONCE", "subtotal": 30, "orderRef": "o-1"}, headers=TENANT)
    assert first.status_code == 200
    assert first.json()["discount"] == 5.0

    repeat = client.post("/api/v1/coupons/redeem", json={"code": "ONCE", "subtotal": 30, "orderRef": "o-1"}, headers=TENANT)
    assert repeat.status_code == 200
    assert repeat.json()["eligible"] is True

    second = client.post("/api/v1/coupons/redeem", json={"code": "ONCE", "subtotal": 30, "orderRef": "o-2"}, headers=TENANT)
    assert second.status_code == 200
    assert second.json()["reason"] == "USAGE_LIMIT_REACHED"

    coupon = client.get(f"/api/v1/coupons/{created['id']}", headers=TENANT).json()
    assert coupon["usageCount"] == 1
    redemptions = client.get(f"/api/v1/coupons/{created['id']}/redemptions", headers=TENANT).json()
    assert [r["orderRef"] for r in redemptions] == ["o-1"]
    assert redemptions[0]["discountAmount"] == 5.0


def test_redeem_ignores_backdated_order_time(client: TestClient) -> None:
    yesterday = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    created = _create(client, code="GONE", type="FIXED", value=5, usageLimit=3, expiresAt=yesterday)

    preview = client.post(
        "/api/v1/coupons/validate",
        json={"code": "GONE", "subtotal": 30, "occursAt": "2000-01-01T00:00:00Z"},
        headers=TENANT,
    )
    assert preview.json()["eligible"] is True

    res = client.post(
        "/api/v1/coupons/redeem",
        json={"code": "GONE", "subtotal": 30, "orderRef": "o-9", "occursAt": "2000-01-01T00:00:00Z"},
        headers=TENANT,
    )
    assert res.status_code == 200
    assert res.json()["eligible"] is False
    assert res.json()["reason"] == "EXPIRED"
    assert client.get(f"/api/v1/coupons/{created['id']}", headers=TENANT).json()["usageCount"] == 0


def test_second_coupon_on_same_order_is_a_conflict(client: TestClient) -> None:
    _create(client, code="ONE", type="FIXED", value=5)
    other = _create(client, code="TWO", type="FIXED", value=5, usageLimit=2)

    first = client.post("/api/v1/coupons/redeem", json={"code": "ONE", "subtotal": 30, "orderRef": "o-1"}, headers=TENANT)
    assert first.status_code == 200

    res = client.post("/api/v1/coupons/redeem", json={"code": "TWO", "subtotal": 30, "orderRef": "o-1"}, headers=TENANT)
    assert res.status_code == 409
    assert res.json() == {"detail": "Order o-1 already has a coupon applied", "code": "order_already_redeemed"}
    assert client.get(f"/api/v1/coupons/{other['id']}", headers=TENANT).json()["usageCount"] == 0


def test_sub_cent_amounts_are_rejected(client: TestClient) -> None:
    _create(client, code="BIG", type="FIXED", value=25)
    res = client.post("/api/v1/coupons/validate", json={"code": "BIG", "subtotal": "10.005"}, headers=TENANT)
    assert res.status_code == 422
    assert res.json()["code"] == "validation_error"

    res = client.post("/api/v1/coupons/validate", json={"code": "BIG", "items": [{"price": "1.001"}]}, headers=TENANT)
    assert res.status_code == 422


def test_redeem_requires_order_ref(client: TestClient) -> None:
    _create(client)
    res = client.post("/api/v1/coupons/redeem", json={"code": "SAVE10", "subtotal": 30}, headers=TENANT)
    assert res.status_code == 422
    assert res.json()["code"] == "validation_error"


def test_overlong_tenant_header_is_rejected(client: TestClient) -> None:
    res = client.get("/api/v1/coupons", headers={"X-Tenant-ID": "x" * 65})
    assert res.status_code == 400
    assert res.json() == {"detail": "Invalid tenant id", "code": None}
