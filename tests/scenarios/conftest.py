"""
Fixtures and helpers for end-to-end scenario tests.

Provides:
- Concise HTTP helpers for placing and moving orders
- DB assertions (order status, account balance, posted transactions)
"""
from typing import Optional

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.db.models.credit import AccountEntityType, CreditAccount, CreditTransaction
from orderflow.db.models.order import Order, OrderStatus
from orderflow.db.models.rider import Rider


# ============================================================================
# HTTP helpers
# ============================================================================


async def place_order(
    client: httpx.AsyncClient,
    headers: dict,
    restaurant_id: int,
    *,
    payment_method: str = "cash",
    items: Optional[list] = None,
    **extra,
) -> dict:
    """POST /api/orders and return the created order"""
    body = {
        "restaurant_id": restaurant_id,
        "items": items or [{"name": "Ceviche mixto", "quantity": 2, "unit_price_cents": 1500}],
        "payment_method": payment_method,
        "latitude": -12.05,
        "longitude": -77.04,
        **extra,
    }
    response = await client.post("/api/orders", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def move(
    client: httpx.AsyncClient,
    headers: dict,
    order_id: int,
    status: str,
    *,
    expect: int = 200,
    **payload,
) -> dict:
    """POST a transition and check the response status"""
    response = await client.post(
        f"/api/orders/{order_id}/transition",
        json={"status": status, **payload},
        headers=headers,
    )
    assert response.status_code == expect, response.text
    return response.json()


async def kitchen_to_ready(client: httpx.AsyncClient, headers: dict, order_id: int) -> None:
    for status in ("confirmed", "preparing", "ready"):
        await move(client, headers, order_id, status)


# ============================================================================
# DB assertions
# ============================================================================


async def assert_order_status(db: AsyncSession, order_id: int, expected: OrderStatus) -> Order:
    order = await db.get(Order, order_id, populate_existing=True)
    assert order is not None, f"Order {order_id} not found"
    assert order.status == expected, f"Expected {expected.value}, got {order.status.value}"
    return order


async def assert_balance(
    db: AsyncSession,
    entity_type: AccountEntityType,
    entity_id: int,
    expected: int,
) -> None:
    result = await db.execute(
        select(CreditAccount)
        .where(CreditAccount.entity_type == entity_type, CreditAccount.entity_id == entity_id)
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    balance = account.balance if account else 0
    assert balance == expected, f"{entity_type.value} {entity_id}: expected {expected}, got {balance}"


async def assert_order_transaction_count(db: AsyncSession, order_id: int, expected: int) -> None:
    result = await db.execute(
        select(func.count(CreditTransaction.id)).where(CreditTransaction.order_id == order_id)
    )
    assert result.scalar() == expected


async def current_order_id(db: AsyncSession, rider_id: int) -> Optional[int]:
    rider = await db.get(Rider, rider_id, populate_existing=True)
    return rider.current_order_id
