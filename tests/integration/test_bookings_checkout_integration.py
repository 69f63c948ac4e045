from bag2go.orders.models import OrderStatus
from bag2go.utils.security import get_current_user, require_user


def test_checkout_returns_order_and_session(client, store, gateway, booking_payload):
    # Le fixture _override_dependencies fournit un user authentifié et le workflow en mémoire
    res = client.post("/api/v1/bookings/checkout", json=booking_payload(bags=2))

    assert res.status_code == 200
    data = res.json()
    assert data["sessionId"] == "cs_test_1"
    assert data["url"].startswith("https://checkout.stripe.test/")
    order = store.get_order(data["orderId"])
    assert order.user_id == "test-user"
    assert order.status == OrderStatus.PENDING
    assert order.payment_ref == "cs_test_1"
    assert gateway.calls[0]["amount"] == 4000
    assert "{CHECKOUT_SESSION_ID}" in gateway.calls[0]["success_ref"]

def test_checkout_invalid_payload_lists_fields(client, store, booking_payload):
    payload = booking_payload(bags=0, airline="")
    del payload["pickupAddress"]

    res = client.post("/api/v1/bookings/checkout", json=payload)

    assert res.status_code == 422
    fields = {e["field"] for e in res.json()["errors"]}
    assert fields == {"bags", "airline", "pickup_address"}
    assert store.list_orders_for_user("test-user") == []

def test_checkout_malformed_json_is_422(client):
    res = client.post(
        "/api/v1/bookings/checkout",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert res.status_code == 422
    assert res.json()["errors"][0]["field"] == "body"

def test_checkout_payment_provider_down_is_502(client, store, gateway, booking_payload):
    gateway.fail = True

    res = client.post("/api/v1/bookings/checkout", json=booking_payload())

    assert res.status_code == 502
    order = store.get_order(res.json()["orderId"])
    assert order.status == OrderStatus.CANCELLED

def test_checkout_requires_authentication(app, client, booking_payload):
    app.dependency_overrides.pop(require_user, None)
    app.dependency_overrides.pop(get_current_user, None)

    res = client.post("/api/v1/bookings/checkout", json=booking_payload())

    assert res.status_code == 401
