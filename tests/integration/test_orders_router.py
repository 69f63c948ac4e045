from bag2go.orders.models import BookingRequest
from bag2go.utils.security import require_user


def test_list_my_orders(client, store, booking_payload):
    booking = BookingRequest.model_validate(booking_payload(bags=2))
    mine = store.create_order(booking, 2, user_id="test-user")
    store.create_order(booking, 1, user_id="someone-else")

    res = client.get("/api/v1/orders")

    assert res.status_code == 200
    items = res.json()["items"]
    assert [i["id"] for i in items] == [mine.id]
    assert items[0]["status"] == "PENDING"
    assert items[0]["notified"] is False
    assert [b["position"] for b in items[0]["bags"]] == [1, 2]
    # champs internes masqués
    assert "payment_ref" not in items[0]
    assert "notifier_message_id" not in items[0]
    assert res.headers["Cache-Control"].startswith("no-store")

def test_get_my_order(client, store, booking_payload):
    order = store.create_order(BookingRequest.model_validate(booking_payload()), 1, user_id="test-user")
    res = client.get(f"/api/v1/orders/{order.id}")
    assert res.status_code == 200
    assert res.json()["bags"][0]["tag_number"] == order.bags[0].tag_number

def test_other_users_order_is_404(client, store, booking_payload):
    order = store.create_order(BookingRequest.model_validate(booking_payload()), 1, user_id="someone-else")
    assert client.get(f"/api/v1/orders/{order.id}").status_code == 404
    assert client.get("/api/v1/orders/not-a-uuid").status_code == 404

def test_admin_can_read_any_order(app, client, store, booking_payload):
    order = store.create_order(BookingRequest.model_validate(booking_payload()), 1, user_id="someone-else")
    app.dependency_overrides[require_user] = lambda: {"id": "admin-user-id", "role": "admin"}
    assert client.get(f"/api/v1/orders/{order.id}").status_code == 200
