# tests/api/test_admin_api.py

from datetime import timedelta

from marketplace.core.states import PaymentMethod
from marketplace.utils.time import utcnow
from tests.factories import ADMIN, SELLER


async def test_admin_runs_reconciliation(client, auth_headers, create_order):
    create_order(payment_method=PaymentMethod.TRANSFER, expires_at=utcnow() - timedelta(hours=2))

    response = await client.post("/api/v1/admin/reconciliation/run", headers=auth_headers(ADMIN))

    assert response.status_code == 200
    body = response.json()
    assert body["expired_orders_cancelled"] == 1
    assert body["negative_balances"] == []


async def test_reconciliation_requires_admin(client, auth_headers):
    response = await client.post("/api/v1/admin/reconciliation/run", headers=auth_headers(SELLER))

    assert response.status_code == 403
