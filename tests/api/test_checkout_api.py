# tests/api/test_checkout_api.py

import pytest

from tests.factories import BUYER, OTHER_BUYER, SELLER


def _body(**values):
    body = {
        "seller_id": SELLER.id,
        "payment_method": "cash",
        "items": [{"product_id": "p-1", "title": "Empanadas", "unit_price_cents": 2_500, "quantity": 4}],
    }
    body.update(values)
    return body


async def test_checkout_creates_order_with_discount(client, auth_headers, rewards_config, grant_points):
    rewards_config(point_value_cents=35)
    grant_points(BUYER.id, 40)

    response = await client.post(
        "/api/v1/checkout", json=_body(requested_points_to_redeem=50), headers=auth_headers(BUYER)
    )

    assert response.status_code == 201
    body = response.json()
    assert body["points_spent"] == 40
    assert body["discount_cents"] == 1_400
    assert body["total_cents"] == 8_600

    balance = await client.get("/api/v1/points/balance", headers=auth_headers(BUYER))
    assert balance.json() == {"available": 0}


@pytest.mark.parametrize("item", [
    {"product_id": "p-1", "unit_price_cents": "2500", "quantity": 1},
    {"product_id": "p-1", "unit_price_cents": 25.5, "quantity": 1},
    {"product_id": "p-1", "unit_price_cents": -1, "quantity": 1},
    {"product_id": "p-1", "unit_price_cents": 2_500, "quantity": 0},
])
async def test_amounts_must_be_integers(client, auth_headers, item):
    response = await client.post("/api/v1/checkout", json=_body(items=[item]), headers=auth_headers(BUYER))

    assert response.status_code == 422


async def test_negative_points_request_is_rejected(client, auth_headers):
    response = await client.post(
        "/api/v1/checkout", json=_body(requested_points_to_redeem=-5), headers=auth_headers(BUYER)
    )

    assert response.status_code == 422


async def test_buyer_id_must_match_token(client, auth_headers):
    response = await client.post("/api/v1/checkout", json=_body(buyer_id=OTHER_BUYER.id), headers=auth_headers(BUYER))

    assert response.status_code == 403


# --- Корзина ---

async def test_cart_then_checkout(client, auth_headers):
    headers = auth_headers(BUYER)
    item = {"seller_id": SELLER.id, "product_id": "p-1", "title": "Alfajores", "unit_price_cents": 1_500, "quantity": 2}

    added = await client.post("/api/v1/cart/items", json=item, headers=headers)
    assert added.status_code == 200
    assert added.json()["subtotal_cents"] == 3_000

    await client.post("/api/v1/cart/items", json={**item, "product_id": "p-2", "quantity": 1}, headers=headers)
    removed = await client.delete("/api/v1/cart/items/p-2", params={"seller_id": SELLER.id}, headers=headers)
    assert [i["product_id"] for i in removed.json()["items"]] == ["p-1"]

    order = await client.post("/api/v1/checkout", json=_body(items=None), headers=headers)
    assert order.status_code == 201
    assert order.json()["total_cents"] == 3_000

    cart = await client.get("/api/v1/cart", params={"seller_id": SELLER.id}, headers=headers)
    assert cart.json()["items"] == []


async def test_clear_cart(client, auth_headers):
    headers = auth_headers(BUYER)
    item = {"seller_id": SELLER.id, "product_id": "p-1", "unit_price_cents": 1_500, "quantity": 1}
    await client.post("/api/v1/cart/items", json=item, headers=headers)

    response = await client.delete("/api/v1/cart", params={"seller_id": SELLER.id}, headers=headers)
    cart = await client.get("/api/v1/cart", params={"seller_id": SELLER.id}, headers=headers)

    assert response.status_code == 204
    assert cart.json()["subtotal_cents"] == 0


async def test_cart_is_for_buyers(client, auth_headers):
    response = await client.get("/api/v1/cart", params={"seller_id": SELLER.id}, headers=auth_headers(SELLER))

    assert response.status_code == 403
