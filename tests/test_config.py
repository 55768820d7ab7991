"""
Tests for Settings validation
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from orderflow.core.config import Settings

SECRET = "unit-test-secret"


class TestDatabaseUrl:

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        ("postgres://u:p@db:5432/of", "postgresql+asyncpg://u:p@db:5432/of"),
        ("postgresql://u:p@db:5432/of", "postgresql+asyncpg://u:p@db:5432/of"),
        ("postgresql+asyncpg://u:p@db:5432/of", "postgresql+asyncpg://u:p@db:5432/of"),
        ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
    ])
    def test_async_driver(self, raw, expected):
        assert Settings(DATABASE_URL=raw, JWT_SECRET_KEY=SECRET).DATABASE_URL == expected


class TestPosRates:

    @pytest.mark.unit
    def test_defaults(self):
        s = Settings(JWT_SECRET_KEY=SECRET)
        assert s.POS_COMMISSION_RATE == Decimal("0.045")
        assert s.POS_IGV_RATE == Decimal("0.18")
        assert s.POS_SURCHARGE_ENABLED is False

    @pytest.mark.unit
    @pytest.mark.parametrize("field,value", [
        ("POS_COMMISSION_RATE", "0.25"),
        ("POS_COMMISSION_RATE", "-0.01"),
        ("POS_IGV_RATE", "0.30"),
    ])
    def test_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            Settings(JWT_SECRET_KEY=SECRET, **{field: value})


class TestRiderHeldMethods:

    @pytest.mark.unit
    def test_normalized(self):
        s = Settings(JWT_SECRET_KEY=SECRET, RIDER_HELD_PAYMENT_METHODS=" POS, cash ,")
        assert s.RIDER_HELD_PAYMENT_METHODS == "cash,pos"
        assert s.rider_held_payment_methods == {"cash", "pos"}

    @pytest.mark.unit
    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            Settings(JWT_SECRET_KEY=SECRET, RIDER_HELD_PAYMENT_METHODS="cash,bitcoin")


class TestProductionChecks:

    @pytest.mark.unit
    def test_missing_secret_outside_debug(self):
        with pytest.raises(ValidationError):
            Settings(JWT_SECRET_KEY="", DEBUG=False)

    @pytest.mark.unit
    def test_missing_secret_in_debug_warns(self):
        with pytest.warns(UserWarning):
            Settings(JWT_SECRET_KEY="", DEBUG=True)

    @pytest.mark.unit
    def test_credit_thresholds_ordered(self):
        with pytest.raises(ValidationError):
            Settings(JWT_SECRET_KEY=SECRET, CREDIT_MINIMUM_CENTS=20000, CREDIT_WARNING_CENTS=15000)

    @pytest.mark.unit
    def test_fee_service_url_normalized(self):
        s = Settings(JWT_SECRET_KEY=SECRET, FEE_SERVICE_URL="fees:8001/")
        assert s.FEE_SERVICE_URL == "http://fees:8001"
