"""
API tests for credits, recharge codes, liquidations and cash reports
"""
import pytest

from orderflow.db.models.credit import AccountEntityType, CreditTransactionType
from orderflow.db.repository import ElevatedRepository
from orderflow.domain.business_calendar import business_today
from orderflow.domain.services.credit_ledger_service import CreditLedgerService


@pytest.fixture
def fund(db_session):
    """Post a credit to an account and commit"""
    async def _fund(entity_type: AccountEntityType, entity_id: int, amount_cents: int) -> None:
        ledger = CreditLedgerService(ElevatedRepository(db_session))
        await ledger.post_to_entity(entity_type, entity_id, CreditTransactionType.ORDER_CREDIT, amount_cents)
        await db_session.commit()
    return _fund


class TestRechargeCodeEndpoints:

    @pytest.mark.unit
    async def test_generate_redeem_and_summary(self, test_client, agent, auth_headers, rider_factory, rider_actor):
        rider = await rider_factory()
        # A rejected request rolls back the shared session and expires loaded rows
        rider_id = rider.id

        created = await test_client.post(
            "/api/recharge-codes", json={"amount_cents": 5000}, headers=auth_headers(agent)
        )
        assert created.status_code == 201
        assert created.json()["status"] == "pending"
        code = created.json()["code"]

        rider_headers = auth_headers(rider_actor(rider))
        redeemed = await test_client.post("/api/credits/redeem", json={"code": code.lower()}, headers=rider_headers)
        assert redeemed.status_code == 200
        assert redeemed.json()["type"] == "recharge"
        assert redeemed.json()["balance_after"] == 5000

        again = await test_client.post("/api/credits/redeem", json={"code": code}, headers=rider_headers)
        assert again.status_code == 409

        summary = await test_client.get(f"/api/credits/rider/{rider_id}", headers=rider_headers)
        assert summary.status_code == 200
        data = summary.json()
        assert data["balance"] == 5000
        assert data["health"]["status"] == "critical"
        assert data["health"]["can_take_cash_orders"] is False
        assert data["health"]["shortfall_cents"] == 5000
        assert len(data["recent"]) == 1

    @pytest.mark.unit
    async def test_unknown_code(self, test_client, auth_headers, rider_factory, rider_actor):
        rider = await rider_factory()
        response = await test_client.post(
            "/api/credits/redeem", json={"code": "ABCDEFGH"}, headers=auth_headers(rider_actor(rider))
        )
        assert response.status_code == 404

    @pytest.mark.unit
    async def test_staff_must_name_rider(self, test_client, owner, auth_headers):
        response = await test_client.post("/api/credits/redeem", json={"code": "ABCDEFGH"}, headers=auth_headers(owner))
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "rider_id"

    @pytest.mark.unit
    async def test_riders_cannot_generate(self, test_client, auth_headers, rider_factory, rider_actor):
        rider = await rider_factory()
        response = await test_client.post(
            "/api/recharge-codes", json={"amount_cents": 5000}, headers=auth_headers(rider_actor(rider))
        )
        assert response.status_code == 403

    @pytest.mark.unit
    async def test_list_and_void(self, test_client, agent, auth_headers):
        created = await test_client.post(
            "/api/recharge-codes", json={"amount_cents": 2000}, headers=auth_headers(agent)
        )
        code_id = created.json()["id"]

        voided = await test_client.post(f"/api/recharge-codes/{code_id}/void", headers=auth_headers(agent))
        assert voided.status_code == 200
        assert voided.json()["status"] == "voided"
        assert voided.json()["voided_at"] is not None

        listing = await test_client.get(
            "/api/recharge-codes", params={"status": "voided"}, headers=auth_headers(agent)
        )
        assert listing.status_code == 200
        assert [c["id"] for c in listing.json()["items"]] == [code_id]

        twice = await test_client.post(f"/api/recharge-codes/{code_id}/void", headers=auth_headers(agent))
        assert twice.status_code == 409


class TestAccountEndpoints:

    @pytest.mark.unit
    async def test_manual_adjustment_owner_only(self, test_client, owner, city_admin, auth_headers, rider_factory, fund):
        rider = await rider_factory()
        await fund(AccountEntityType.RIDER, rider.id, 3000)
        body = {"entity_type": "rider", "entity_id": rider.id, "amount": -1000, "note": "Damaged delivery bag"}

        denied = await test_client.post("/api/credits/adjustments", json=body, headers=auth_headers(city_admin))
        assert denied.status_code == 403

        response = await test_client.post("/api/credits/adjustments", json=body, headers=auth_headers(owner))
        assert response.status_code == 201
        assert response.json()["type"] == "adjustment"
        assert response.json()["balance_after"] == 2000
        assert response.json()["actor_user_id"] == owner.user_id

    @pytest.mark.unit
    async def test_adjustment_overdraw(self, test_client, owner, auth_headers, rider_factory, fund):
        rider = await rider_factory()
        await fund(AccountEntityType.RIDER, rider.id, 500)

        response = await test_client.post(
            "/api/credits/adjustments",
            json={"entity_type": "rider", "entity_id": rider.id, "amount": -1000, "note": "Reversal of bonus"},
            headers=auth_headers(owner),
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_4002"

    @pytest.mark.unit
    @pytest.mark.parametrize("amount,note", [(0, "Long enough note"), (100, "short")])
    async def test_adjustment_schema(self, test_client, owner, auth_headers, amount, note):
        response = await test_client.post(
            "/api/credits/adjustments",
            json={"entity_type": "rider", "entity_id": 1, "amount": amount, "note": note},
            headers=auth_headers(owner),
        )
        assert response.status_code == 422

    @pytest.mark.unit
    async def test_transactions_paginated(self, test_client, owner, auth_headers, restaurant_factory, fund):
        restaurant = await restaurant_factory()
        for amount in (100, 200, 300):
            await fund(AccountEntityType.RESTAURANT, restaurant.id, amount)

        response = await test_client.get(
            f"/api/credits/restaurant/{restaurant.id}/transactions",
            params={"page": 1, "limit": 2},
            headers=auth_headers(owner),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert [tx["amount"] for tx in data["items"]] == [300, 200]

    @pytest.mark.unit
    async def test_other_riders_account_not_visible(self, test_client, auth_headers, rider_factory, rider_actor, fund):
        mine = await rider_factory(name="Mine")
        theirs = await rider_factory(name="Theirs")
        await fund(AccountEntityType.RIDER, theirs.id, 1000)

        response = await test_client.get(
            f"/api/credits/rider/{theirs.id}", headers=auth_headers(rider_actor(mine))
        )

        assert response.status_code == 404


class TestLiquidationEndpoint:

    @pytest.mark.unit
    async def test_liquidate_once_per_day(self, test_client, owner, auth_headers, restaurant_factory, fund):
        restaurant = await restaurant_factory()
        await fund(AccountEntityType.RESTAURANT, restaurant.id, 20000)
        body = {"restaurant_id": restaurant.id, "amount_cents": 3000, "method": "yape"}

        response = await test_client.post("/api/liquidations", json=body, headers=auth_headers(owner))
        assert response.status_code == 201
        assert response.json()["business_date"] == business_today().isoformat()
        assert response.json()["transaction_id"] is not None

        again = await test_client.post("/api/liquidations", json=body, headers=auth_headers(owner))
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "ERR_4020"

    @pytest.mark.unit
    async def test_large_payout_needs_proof(self, test_client, owner, auth_headers, restaurant_factory, fund):
        restaurant = await restaurant_factory()
        await fund(AccountEntityType.RESTAURANT, restaurant.id, 20000)

        response = await test_client.post(
            "/api/liquidations",
            json={"restaurant_id": restaurant.id, "amount_cents": 10000, "method": "transfer"},
            headers=auth_headers(owner),
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "proof_url"

    @pytest.mark.unit
    async def test_restaurant_cannot_liquidate_itself(
        self, test_client, auth_headers, restaurant_factory, restaurant_actor, fund
    ):
        restaurant = await restaurant_factory()
        await fund(AccountEntityType.RESTAURANT, restaurant.id, 20000)

        response = await test_client.post(
            "/api/liquidations",
            json={"restaurant_id": restaurant.id, "amount_cents": 1000, "method": "cash"},
            headers=auth_headers(restaurant_actor(restaurant)),
        )

        assert response.status_code == 403

    @pytest.mark.unit
    async def test_list_liquidations(
        self, test_client, owner, auth_headers, restaurant_factory, restaurant_actor, fund
    ):
        mine = await restaurant_factory(name="Mine")
        theirs = await restaurant_factory(name="Theirs")
        mine_id, theirs_id = mine.id, theirs.id
        mine_headers = auth_headers(restaurant_actor(mine))
        for restaurant_id in (mine_id, theirs_id):
            await fund(AccountEntityType.RESTAURANT, restaurant_id, 5000)
            created = await test_client.post(
                "/api/liquidations",
                json={"restaurant_id": restaurant_id, "amount_cents": 1500, "method": "plin"},
                headers=auth_headers(owner),
            )
            assert created.status_code == 201

        listed = await test_client.get(
            "/api/liquidations", params={"restaurant_id": theirs_id}, headers=auth_headers(owner)
        )
        assert listed.status_code == 200
        assert listed.json()["total"] == 1
        assert listed.json()["items"][0]["restaurant_id"] == theirs_id
        assert listed.json()["items"][0]["method"] == "plin"

        own = await test_client.get("/api/liquidations", headers=mine_headers)
        assert own.status_code == 200
        assert [item["restaurant_id"] for item in own.json()["items"]] == [mine_id]

    @pytest.mark.unit
    async def test_customers_cannot_list_liquidations(self, test_client, customer, auth_headers):
        response = await test_client.get("/api/liquidations", headers=auth_headers(customer))
        assert response.status_code == 403


class TestCashReportEndpoints:

    @pytest.mark.unit
    async def test_declare_submit_approve(self, test_client, owner, auth_headers, rider_factory, rider_actor):
        rider = await rider_factory()
        rider_headers = auth_headers(rider_actor(rider))

        declared = await test_client.put(
            "/api/cash-reports", json={"declared_cash_cents": 0}, headers=rider_headers
        )
        assert declared.status_code == 200
        report = declared.json()
        assert report["status"] == "draft"
        assert report["report_date"] == business_today().isoformat()
        assert report["is_flagged"] is False

        submitted = await test_client.post(f"/api/cash-reports/{report['id']}/submit", headers=rider_headers)
        assert submitted.status_code == 200
        assert submitted.json()["status"] == "submitted"

        redeclare = await test_client.put(
            "/api/cash-reports", json={"declared_cash_cents": 100}, headers=rider_headers
        )
        assert redeclare.status_code == 409

        approved = await test_client.patch(
            f"/api/cash-reports/{report['id']}", json={"status": "approved"}, headers=auth_headers(owner)
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"
        assert approved.json()["reviewed_by_user_id"] == owner.user_id

    @pytest.mark.unit
    async def test_reconcile_preview(self, test_client, owner, auth_headers, rider_factory):
        rider = await rider_factory()

        response = await test_client.get(
            "/api/cash-reports/reconcile",
            params={"rider_id": rider.id, "report_date": "2024-03-15", "declared_cash_cents": 600},
            headers=auth_headers(owner),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["expected_cash_cents"] == 0
        assert data["discrepancy_cents"] == 600
        assert data["is_flagged"] is True

    @pytest.mark.unit
    async def test_staff_cannot_declare(self, test_client, owner, auth_headers):
        response = await test_client.put(
            "/api/cash-reports", json={"declared_cash_cents": 0}, headers=auth_headers(owner)
        )
        assert response.status_code == 403

    @pytest.mark.unit
    async def test_list_and_get_reports(self, test_client, owner, auth_headers, rider_factory, rider_actor):
        first = await rider_factory(name="Primero")
        second = await rider_factory(name="Segundo")
        second_id = second.id
        first_headers = auth_headers(rider_actor(first))
        second_headers = auth_headers(rider_actor(second))
        for headers in (first_headers, second_headers):
            declared = await test_client.put(
                "/api/cash-reports", json={"declared_cash_cents": 0}, headers=headers
            )
            assert declared.status_code == 200
        submitted_id = declared.json()["id"]
        await test_client.post(f"/api/cash-reports/{submitted_id}/submit", headers=second_headers)

        listed = await test_client.get(
            "/api/cash-reports",
            params={"report_date": business_today().isoformat(), "status": "submitted"},
            headers=auth_headers(owner),
        )
        assert listed.status_code == 200
        assert listed.json()["total"] == 1
        assert listed.json()["items"][0]["rider_id"] == second_id

        by_rider = await test_client.get(
            "/api/cash-reports", params={"rider_id": second_id}, headers=auth_headers(owner)
        )
        assert [item["id"] for item in by_rider.json()["items"]] == [submitted_id]

        fetched = await test_client.get(f"/api/cash-reports/{submitted_id}", headers=auth_headers(owner))
        assert fetched.status_code == 200
        assert fetched.json()["status"] == "submitted"

        hidden = await test_client.get(f"/api/cash-reports/{submitted_id}", headers=first_headers)
        assert hidden.status_code == 404

        own = await test_client.get("/api/cash-reports", headers=first_headers)
        assert own.json()["total"] == 1
        assert own.json()["items"][0]["id"] != submitted_id
