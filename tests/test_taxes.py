"""
Tests for the tax preview endpoint, promo endpoints and the Redis tax-rule cache.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app import cache
from app.deps import get_current_user
from app.errors import PromoExhaustedError, PromoRejectedError

from .factories import (
    ROOM_TYPE_ID,
    make_front_desk,
    make_guest,
    promo_response,
    tax_rule_set,
)

PROMO_PATH = "app.routers.promo.promo_crud"


# ---------------------------------------------------------------------------
# POST /calculate-taxes
# ---------------------------------------------------------------------------


class TestCalculateTaxes:
    def test_gst_on_two_nights(self, guest_client):
        resp = guest_client.post("/calculate-taxes", json={"original_amount": "8100"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_tax_amount"] == "1458.00"
        assert data["total_amount"] == "9558.00"
        assert data["fallback"] is False

    def test_split_rules_with_discount(self, client_factory):
        c = client_factory(make_guest(), tax_rules=tax_rule_set(("CGST", "9"), ("SGST", "9")))
        resp = c.post(
            "/calculate-taxes", json={"original_amount": "1000", "discount_amount": "100"}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["base_amount"] == "900.00"
        assert [t["amount"] for t in data["taxes"]] == ["81.00", "81.00"]

    def test_fallback_is_reported(self, client_factory):
        c = client_factory(make_guest(), tax_rules=tax_rule_set(fallback=True))
        resp = c.post("/calculate-taxes", json={"original_amount": "100"})
        assert resp.json()["fallback"] is True

    def test_negative_amount_returns_422(self, guest_client):
        resp = guest_client.post("/calculate-taxes", json={"original_amount": "-5"})
        assert resp.status_code == 422


class TestInvalidateTaxCache:
    def test_returns_204(self, desk_client):
        with patch("app.routers.taxes.invalidate_tax_rules_cache", AsyncMock()) as mock_inv:
            resp = desk_client.delete("/tax-rules/cache")
        assert resp.status_code == 204
        mock_inv.assert_awaited_once()

    def test_guest_cannot_invalidate_returns_403(self, anon_app):
        async def _guest():
            return make_guest()

        anon_app.dependency_overrides[get_current_user] = _guest
        with TestClient(anon_app) as c:
            resp = c.delete("/tax-rules/cache")
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# /promo-codes
# ---------------------------------------------------------------------------


class TestPromoEndpoints:
    def test_validate(self, guest_client):
        result = dict(
            promo_code=promo_response(),
            original_amount="8100.00",
            discount_amount="810.00",
            final_amount="7290.00",
        )
        with patch(PROMO_PATH) as mock_crud:
            mock_crud.validate = AsyncMock(return_value=result)
            resp = guest_client.post(
                "/promo-codes/validate",
                json={"code": "SUMMER10", "room_type_id": str(ROOM_TYPE_ID), "amount": "8100"},
            )
        assert resp.status_code == 200
        assert resp.json()["final_amount"] == "7290.00"

    def test_rejection_carries_reason(self, guest_client):
        with patch(PROMO_PATH) as mock_crud:
            mock_crud.validate = AsyncMock(
                side_effect=PromoRejectedError("expired", "Promo code has expired")
            )
            resp = guest_client.post(
                "/promo-codes/validate",
                json={"code": "SUMMER10", "room_type_id": str(ROOM_TYPE_ID), "amount": "8100"},
            )
        assert resp.status_code == 422
        assert resp.json()["detail"]["reason"] == "expired"

    def test_exhausted_returns_409(self, guest_client):
        with patch(PROMO_PATH) as mock_crud:
            mock_crud.validate = AsyncMock(
                side_effect=PromoExhaustedError("Promo code usage limit reached")
            )
            resp = guest_client.post(
                "/promo-codes/validate",
                json={"code": "SUMMER10", "room_type_id": str(ROOM_TYPE_ID), "amount": "8100"},
            )
        assert resp.status_code == 409

    def test_list_active_only(self, desk_client):
        with patch(PROMO_PATH) as mock_crud:
            mock_crud.list_promos = AsyncMock(return_value=[promo_response()])
            resp = desk_client.get("/promo-codes/", params={"active_only": "true"})
        assert resp.status_code == 200
        mock_crud.list_promos.assert_awaited_once_with(active_only=True)

    def test_create(self, desk_client):
        with patch(PROMO_PATH) as mock_crud:
            mock_crud.create_promo = AsyncMock(return_value=promo_response())
            resp = desk_client.post(
                "/promo-codes/",
                json={
                    "code": "SUMMER10",
                    "discount_type": "percentage",
                    "discount_value": "10",
                    "valid_from": "2026-05-01T00:00:00Z",
                    "valid_until": "2026-07-01T00:00:00Z",
                },
            )
        assert resp.status_code == 201

    def test_percentage_over_100_returns_422(self, desk_client):
        resp = desk_client.post(
            "/promo-codes/",
            json={
                "code": "HUGE",
                "discount_type": "percentage",
                "discount_value": "150",
                "valid_from": "2026-05-01T00:00:00Z",
                "valid_until": "2026-07-01T00:00:00Z",
            },
        )
        assert resp.status_code == 422

    def test_guest_cannot_list_returns_403(self, anon_app):
        async def _guest():
            return make_guest()

        anon_app.dependency_overrides[get_current_user] = _guest
        with TestClient(anon_app) as c:
            resp = c.get("/promo-codes/")
        assert resp.status_code == 403

    def test_front_desk_can_list(self, anon_app):
        async def _desk():
            return make_front_desk()

        anon_app.dependency_overrides[get_current_user] = _desk
        with patch(PROMO_PATH) as mock_crud:
            mock_crud.list_promos = AsyncMock(return_value=[])
            with TestClient(anon_app) as c:
                resp = c.get("/promo-codes/")
        assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Redis tax-rule cache
# ---------------------------------------------------------------------------


def _redis(**methods) -> MagicMock:
    mock = MagicMock()
    for name, value in methods.items():
        setattr(mock, name, value)
    return mock


@pytest.mark.anyio
class TestTaxRulesCache:
    async def test_hit_decodes_json(self, anyio_backend):
        redis = _redis(get=AsyncMock(return_value='[{"name": "GST", "percentage": "18"}]'))
        with patch("app.cache.get_redis", return_value=redis):
            rules = await cache.get_tax_rules_cache()
        assert rules == [{"name": "GST", "percentage": "18"}]
        redis.get.assert_awaited_once_with(cache.TAX_RULES_KEY)

    async def test_miss_returns_none(self, anyio_backend):
        redis = _redis(get=AsyncMock(return_value=None))
        with patch("app.cache.get_redis", return_value=redis):
            assert await cache.get_tax_rules_cache() is None

    async def test_redis_down_is_a_miss(self, anyio_backend):
        redis = _redis(get=AsyncMock(side_effect=ConnectionError("redis down")))
        with patch("app.cache.get_redis", return_value=redis):
            assert await cache.get_tax_rules_cache() is None

    async def test_set_uses_ttl(self, anyio_backend):
        redis = _redis(setex=AsyncMock())
        with patch("app.cache.get_redis", return_value=redis):
            await cache.set_tax_rules_cache([{"name": "GST", "percentage": "18"}])
        key, ttl, _ = redis.setex.call_args.args
        assert key == cache.TAX_RULES_KEY
        assert ttl == cache.TAX_RULES_TTL

    async def test_set_failure_is_swallowed(self, anyio_backend):
        redis = _redis(setex=AsyncMock(side_effect=ConnectionError("redis down")))
        with patch("app.cache.get_redis", return_value=redis):
            await cache.set_tax_rules_cache([])

    async def test_invalidate_deletes_key(self, anyio_backend):
        redis = _redis(delete=AsyncMock())
        with patch("app.cache.get_redis", return_value=redis):
            await cache.invalidate_tax_rules_cache()
        redis.delete.assert_awaited_once_with(cache.TAX_RULES_KEY)
