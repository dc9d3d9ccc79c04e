from fastapi.testclient import TestClient

from journeatz.models import OrderStatus
from tests.conftest import PASSWORD, signup


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["timestamp"]


def test_endpoints_require_a_session(client):
    for path in ("/api/users", "/api/orders", "/api/kitchens", "/api/kitchens/k1/menu"):
        r = client.get(path)
        assert r.status_code == 401, path
        assert r.json()["error"]


def test_create_order_scenario(client, admin_headers, kitchen_and_customer):
    payload = {
        "customerId": "c1",
        "kitchenId": "k1",
        "items": [{"name": "Pad Thai", "quantity": 2}],
        "totalAmount": 2598,
        "deliveryAddress": "1 Main St",
    }
    r = client.post("/api/orders", json=payload, headers=admin_headers)
    assert r.status_code == 201, r.text
    order = r.json()
    assert order["id"]
    assert order["status"] == "pending"
    assert set(payload) <= set(order)
    for key, value in payload.items():
        assert order[key] == value, key
    assert order["driverId"] is None
    assert order["createdAt"] and order["updatedAt"]

    again = client.post("/api/orders", json=payload, headers=admin_headers).json()
    assert again["id"] != order["id"]


def test_create_order_failure_is_500_with_message(client, admin_headers, kitchen_and_customer):
    r = client.post("/api/orders", json={"customer_id": "c1"}, headers=admin_headers)
    assert r.status_code == 500
    assert "kitchen_id" in r.json()["error"]


def test_missing_user_is_404(client, admin_headers):
    r = client.get("/api/users/does-not-exist", headers=admin_headers)
    assert r.status_code == 404
    assert r.json() == {"error": "User not found"}


def test_users_are_admin_only_and_hide_password(client, admin_headers):
    headers = signup(client, "casey@example.com", "customer")
    assert client.get("/api/users", headers=headers).status_code == 403

    users = client.get("/api/users", headers=admin_headers).json()
    assert {u["email"] for u in users} >= {"casey@example.com"}
    assert all("password_hash" not in u and "passwordHash" not in u for u in users)

    me = client.get("/api/auth/session", headers=headers).json()["user"]
    assert client.get(f"/api/users/{me['id']}", headers=headers).status_code == 200
    admin_id = next(u["id"] for u in users if u["role"] == "admin")
    assert client.get(f"/api/users/{admin_id}", headers=headers).status_code == 403


def test_customer_order_flow(client):
    kitchen = signup(client, "chef@example.com", "kitchen")
    customer = signup(client, "casey@example.com", "customer")
    driver = signup(client, "dana@example.com", "driver")

    kitchens = client.get("/api/kitchens", headers=customer).json()
    assert len(kitchens) == 1
    kitchen_id = kitchens[0]["id"]

    r = client.post(f"/api/kitchens/{kitchen_id}/menu", json={"name": "Pad Thai", "price": 1299}, headers=kitchen)
    assert r.status_code == 201, r.text
    assert client.post(f"/api/kitchens/{kitchen_id}/menu", json={"name": "X", "price": 1}, headers=customer).status_code == 403
    menu = client.get(f"/api/kitchens/{kitchen_id}/menu", headers=customer).json()
    assert [m["name"] for m in menu] == ["Pad Thai"]

    # customer_id defaults to the caller's own profile
    r = client.post("/api/orders", json={
        "kitchenId": kitchen_id,
        "items": [{"name": "Pad Thai", "quantity": 2, "unit_price": 1299}],
        "totalAmount": 2598,
        "deliveryAddress": "1 Main St",
    }, headers=customer)
    assert r.status_code == 201, r.text
    order_id = r.json()["id"]

    assert [o["id"] for o in client.get("/api/orders", headers=customer).json()] == [order_id]
    assert [o["id"] for o in client.get("/api/orders", headers=kitchen).json()] == [order_id]
    # not ready yet, so drivers don't see it
    assert client.get("/api/orders", headers=driver).json() == []

    assert client.patch(f"/api/orders/{order_id}", json={"status": "cancelled"}, headers=customer).status_code == 403

    assert client.patch(f"/api/orders/{order_id}", json={"status": "in_progress"}, headers=kitchen).status_code == 200
    r = client.patch(f"/api/orders/{order_id}", json={"status": "ready"}, headers=kitchen)
    assert r.status_code == 200
    patched = r.json()
    assert patched["status"] == "ready"
    assert patched["totalAmount"] == 2598
    assert patched["deliveryAddress"] == "1 Main St"
    assert patched["items"] == [{"name": "Pad Thai", "quantity": 2, "unitPrice": 1299}]

    assert [o["id"] for o in client.get("/api/orders", headers=driver).json()] == [order_id]


def test_customer_cannot_order_for_someone_else(client, kitchen_and_customer):
    headers = signup(client, "casey@example.com", "customer")
    r = client.post("/api/orders", json={
        "customer_id": "c1",
        "kitchen_id": "k1",
        "items": [{"name": "Pad Thai", "quantity": 1}],
        "total_amount": 1299,
        "delivery_address": "1 Main St",
    }, headers=headers)
    assert r.status_code == 403


def test_patch_missing_order_is_404(client, admin_headers):
    r = client.patch("/api/orders/nope", json={"status": "ready"}, headers=admin_headers)
    assert r.status_code == 404
    assert r.json()["error"] == "Order not found"


def test_kitchen_toggle(client):
    kitchen = signup(client, "chef@example.com", "kitchen")
    kitchen_id = client.get("/api/kitchens", headers=kitchen).json()[0]["id"]
    r = client.patch(f"/api/kitchens/{kitchen_id}", json={"isOpen": False}, headers=kitchen)
    assert r.status_code == 200
    assert r.json()["isOpen"] is False

    other = signup(client, "rival@example.com", "kitchen")
    assert client.patch(f"/api/kitchens/{kitchen_id}", json={"is_open": True}, headers=other).status_code == 403


def test_admin_listings(client, admin_headers):
    signup(client, "dana@example.com", "driver")
    signup(client, "casey@example.com", "customer")
    assert [d["name"] for d in client.get("/api/drivers", headers=admin_headers).json()] == ["dana"]
    assert [c["name"] for c in client.get("/api/customers", headers=admin_headers).json()] == ["casey"]


def test_auth_errors_have_kinds(client):
    signup(client, "casey@example.com", "customer")
    r = client.post("/api/auth/signup", json={"email": "casey@example.com", "password": "Secret123!", "role": "customer"})
    assert r.status_code == 409
    assert r.json()["kind"] == "AccountExists"

    r = client.post("/api/auth/login", json={"email": "casey@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json()["kind"] == "InvalidCredentials"

    r = client.post("/api/auth/signup", json={"email": "x@example.com", "password": "Secret123!", "role": "chef"})
    assert r.status_code == 403
    assert r.json()["kind"] == "UnknownRole"


def test_signup_rate_limited(engine):
    from journeatz.main import create_app

    app = create_app(engine=engine, seed_demo=False, secret_key="s", signup_limit=1)
    with TestClient(app) as client:
        body = {"email": "a@example.com", "password": "Secret123!", "role": "customer"}
        assert client.post("/api/auth/signup", json=body).status_code == 201
        r = client.post("/api/auth/signup", json=body)
        assert r.status_code == 429
        assert r.json()["kind"] == "RateLimited"


def test_session_cookie_and_logout(client):
    client.post("/api/auth/signup", json={"email": "chef@example.com", "password": "Secret123!", "role": "kitchen"})
    session = client.get("/api/auth/session").json()
    assert session["is_authenticated"] is True
    assert session["role"] == "kitchen"

    assert client.post("/api/auth/logout").json() == {"ok": True}
    session = client.get("/api/auth/session").json()
    assert session == {"is_authenticated": False, "role": None, "user": None}


def test_bearer_token_survives_until_logout(client):
    headers = signup(client, "chef@example.com", "kitchen")
    assert client.get("/api/kitchens", headers=headers).status_code == 200
    client.post("/api/auth/logout", headers=headers)
    assert client.get("/api/kitchens", headers=headers).status_code == 401


def test_admin_accounts_cannot_be_self_registered(client):
    r = client.post("/api/auth/signup", json={"email": "boss@example.com", "password": PASSWORD, "role": "admin"})
    assert r.status_code == 403
    assert r.json()["kind"] == "Forbidden"

    r = client.post("/api/auth/login", json={"email": "boss@example.com", "password": PASSWORD})
    assert r.status_code == 401


def _ready_order(storage, customer_id="c1", kitchen_id="k1"):
    order = storage.create_order({
        "customer_id": customer_id,
        "kitchen_id": kitchen_id,
        "items": [{"name": "Pad Thai", "quantity": 2}],
        "total_amount": 2598,
        "delivery_address": "1 Main St",
    })
    storage.transition_order(order.id, "accept")
    storage.transition_order(order.id, "mark_ready")
    return order


def test_driver_patch_is_limited_to_delivering(client, storage, kitchen_and_customer):
    order = _ready_order(storage)
    driver = signup(client, "dana@example.com", "driver")
    path = f"/api/orders/{order.id}"

    r = client.patch(path, json={"totalAmount": 1, "status": "pending", "deliveryAddress": "elsewhere"}, headers=driver)
    assert r.status_code == 403
    assert client.patch(path, json={"status": "pending"}, headers=driver).status_code == 409
    other = storage.create_driver({"name": "Eve"})
    assert client.patch(path, json={"status": "delivered", "driverId": other.id}, headers=driver).status_code == 403
    unchanged = storage.get_order(order.id)
    assert unchanged.status == OrderStatus.ready
    assert unchanged.total_amount == 2598
    assert unchanged.driver_id is None

    r = client.patch(path, json={"status": "delivered"}, headers=driver)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "delivered"
    assert body["totalAmount"] == 2598
    assert body["driverId"] == storage.get_driver_by_user(storage.get_user_by_email("dana@example.com").id).id


def test_kitchen_patch_is_limited_to_its_transitions(client, storage, kitchen_and_customer):
    kitchen = signup(client, "chef@example.com", "kitchen")
    kitchen_id = storage.get_kitchen_by_user(storage.get_user_by_email("chef@example.com").id).id
    order = storage.create_order({
        "customer_id": "c1",
        "kitchen_id": kitchen_id,
        "items": [{"name": "Pad Thai", "quantity": 1}],
        "total_amount": 1299,
        "delivery_address": "1 Main St",
    })
    path = f"/api/orders/{order.id}"

    assert client.patch(path, json={"totalAmount": 1}, headers=kitchen).status_code == 403
    assert client.patch(path, json={"status": "delivered"}, headers=kitchen).status_code == 409
    assert client.patch(path, json={"status": "cancelled"}, headers=kitchen).json()["status"] == "cancelled"


def test_admin_patch_may_touch_any_field(client, admin_headers, storage, kitchen_and_customer):
    order = _ready_order(storage)
    r = client.patch(f"/api/orders/{order.id}", json={"deliveryAddress": "2 Side St", "status": "pending"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["deliveryAddress"] == "2 Side St"
    assert r.json()["status"] == "pending"


def test_driver_cannot_see_another_drivers_order(client, storage, kitchen_and_customer):
    order = _ready_order(storage)
    first = signup(client, "dana@example.com", "driver")
    second = signup(client, "eve@example.com", "driver")
    dana = storage.get_driver_by_user(storage.get_user_by_email("dana@example.com").id)
    storage.update_order(order.id, {"driver_id": dana.id})

    assert client.get(f"/api/orders/{order.id}", headers=first).status_code == 200
    assert client.get(f"/api/orders/{order.id}", headers=second).status_code == 403
    assert client.get("/api/orders", headers=second).json() == []
    assert client.patch(f"/api/orders/{order.id}", json={"status": "delivered"}, headers=second).status_code == 403


def test_admin_edits_and_deletes_users(client, admin_headers, storage):
    headers = signup(client, "casey@example.com", "customer")
    user_id = client.get("/api/auth/session", headers=headers).json()["user"]["id"]

    r = client.patch(f"/api/users/{user_id}", json={"name": "Casey C", "role": "driver"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["role"] == "driver"
    assert r.json()["name"] == "Casey C"
    assert storage.get_driver_by_user(user_id) is not None
    assert client.patch(f"/api/users/{user_id}", json={"role": "admin"}, headers=headers).status_code == 403

    admin_id = client.get("/api/auth/session", headers=admin_headers).json()["user"]["id"]
    assert client.delete(f"/api/users/{admin_id}", headers=admin_headers).status_code == 403
    assert client.patch(f"/api/users/{admin_id}", json={"role": "customer"}, headers=admin_headers).status_code == 403

    assert client.delete(f"/api/users/{user_id}", headers=admin_headers).json() == {"ok": True}
    assert client.get(f"/api/users/{user_id}", headers=admin_headers).status_code == 404
    assert client.delete(f"/api/users/{user_id}", headers=admin_headers).status_code == 404
    # the deleted account's token stops working
    assert client.get("/api/kitchens", headers=headers).status_code == 401


def test_kitchen_edits_and_removes_menu_items(client):
    kitchen = signup(client, "chef@example.com", "kitchen")
    rival = signup(client, "rival@example.com", "kitchen")
    kitchen_id = next(k["id"] for k in client.get("/api/kitchens", headers=kitchen).json() if k["name"] == "chef's Kitchen")
    item = client.post(f"/api/kitchens/{kitchen_id}/menu", json={"name": "Pad Thai", "price": 1299}, headers=kitchen).json()
    path = f"/api/kitchens/{kitchen_id}/menu/{item['id']}"

    r = client.patch(path, json={"price": 1399, "status": "unavailable"}, headers=kitchen)
    assert r.status_code == 200
    assert r.json()["price"] == 1399
    assert r.json()["status"] == "unavailable"
    assert r.json()["name"] == "Pad Thai"
    assert r.json()["kitchenId"] == kitchen_id

    assert client.patch(path, json={"price": 1}, headers=rival).status_code == 403
    assert client.delete(path, headers=rival).status_code == 403
    assert client.delete(f"/api/kitchens/{kitchen_id}/menu/nope", headers=kitchen).status_code == 404

    assert client.delete(path, headers=kitchen).json() == {"ok": True}
    assert client.get(f"/api/kitchens/{kitchen_id}/menu", headers=kitchen).json() == []
