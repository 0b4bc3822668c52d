from marketplace.orders.models import OrderStatus

CHECKOUT_BODY = {
    "shipping_address": {"address": "KN 5 Rd", "city": "Kigali", "country": "Rwanda"},
    "phone_number": "0788123456",
    "payment_method": "mobile-money",
}


def _fill_cart(store, user_id="test-user"):
    store.add_product("A", "15000", stock=10)
    store.add_product("B", "2000", stock=10)
    store.set_cart(user_id, {"A": 2, "B": 3})


def test_checkout_json_created(client, store, providers):
    _fill_cart(store)
    res = client.post("/api/v1/checkout", json=CHECKOUT_BODY)
    assert res.status_code == 201
    data = res.json()
    assert data["status"] == OrderStatus.PAYMENT_PENDING.value
    assert data["total"] == "36000.00"
    assert data["provider"] == "MTN"
    assert data["payment_reference"].startswith("ECR")
    assert data["pending_url"].endswith(f"?ref={data['payment_reference']}")


def test_checkout_form_submission(client, store, providers):
    _fill_cart(store)
    form = {
        "address": "KN 5 Rd",
        "city": "Kigali",
        "country": "Rwanda",
        "phone_number": "0728123456",
        "payment_method": "mobile-money",
    }
    res = client.post("/api/v1/checkout", data=form)
    assert res.status_code == 201
    assert res.json()["provider"] == "AIRTEL"


def test_checkout_empty_cart_is_400(client, store, providers):
    res = client.post("/api/v1/checkout", json=CHECKOUT_BODY)
    assert res.status_code == 400
    assert res.json() == {"detail": "Panier vide", "code": "empty_cart"}


def test_checkout_insufficient_stock_is_409(client, store, providers):
    store.add_product("A", "15000", stock=1)
    store.set_cart("test-user", {"A": 2})
    res = client.post("/api/v1/checkout", json=CHECKOUT_BODY)
    assert res.status_code == 409
    assert res.json()["code"] == "insufficient_stock"
    assert store.orders == {}


def test_checkout_invalid_phone_is_400(client, store, providers):
    _fill_cart(store)
    res = client.post("/api/v1/checkout", json={**CHECKOUT_BODY, "phone_number": "0700123456"})
    assert res.status_code == 400
    assert res.json()["code"] == "unsupported_provider"


def test_checkout_missing_address_is_422(client, store, providers):
    _fill_cart(store)
    body = {**CHECKOUT_BODY, "shipping_address": {"address": "KN 5 Rd", "city": "", "country": "Rwanda"}}
    assert client.post("/api/v1/checkout", json=body).status_code == 422


def test_checkout_provider_rejection_is_502(client, store, providers):
    _fill_cart(store)
    providers.mode = "reject"
    res = client.post("/api/v1/checkout", json=CHECKOUT_BODY)
    assert res.status_code == 502
    assert res.json()["code"] == "payment_initiation_failed"


def test_checkout_provider_timeout_is_202(client, store, providers):
    _fill_cart(store)
    providers.mode = "timeout"
    res = client.post("/api/v1/checkout", json=CHECKOUT_BODY)
    assert res.status_code == 202
    assert res.json()["status"] == "pending"


def test_checkout_idempotency_key_header(client, store, providers):
    _fill_cart(store)
    first = client.post("/api/v1/checkout", json=CHECKOUT_BODY, headers={"Idempotency-Key": "abc"})
    second = client.post("/api/v1/checkout", json=CHECKOUT_BODY, headers={"Idempotency-Key": "abc"})
    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["order_id"] == first.json()["order_id"]
    assert len(store.orders) == 1


def test_replayed_failed_checkout_is_not_a_success(client, store, providers):
    _fill_cart(store)
    providers.mode = "reject"
    first = client.post("/api/v1/checkout", json=CHECKOUT_BODY, headers={"Idempotency-Key": "k-fail"})
    assert first.status_code == 502
    second = client.post("/api/v1/checkout", json=CHECKOUT_BODY, headers={"Idempotency-Key": "k-fail"})
    assert second.status_code == 200
    data = second.json()
    assert data["status"] == OrderStatus.FAILED.value
    assert data["success"] is False


def test_checkout_summary(client, store):
    _fill_cart(store)
    res = client.get("/api/v1/checkout", params={"phone_number": "0788123456"})
    assert res.status_code == 200
    assert res.json()["providers"] == ["MTN"]
    assert res.json()["fees"]["fee"] == 720


def test_payment_pending_page(client, store, providers):
    _fill_cart(store)
    created = client.post("/api/v1/checkout", json=CHECKOUT_BODY).json()
    ok = client.get(created["pending_url"])
    assert ok.status_code == 200
    assert ok.json()["payment_reference"] == created["payment_reference"]
    bad = client.get(f"/api/v1/checkout/payment-pending/{created['order_id']}", params={"ref": "ECR-x"})
    assert bad.status_code == 400
    assert client.get("/api/v1/checkout/payment-pending/missing", params={"ref": "ECR-x"}).status_code == 404
