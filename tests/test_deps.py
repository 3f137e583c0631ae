"""
Tests for app/deps.py: get_current_user, require_scopes, HotelInfoClient, etc.
These tests use the real dep functions (no overrides) to get coverage.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import httpx
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app.deps import (
    CurrentUser,
    HotelInfoClient,
    can_read_or_manage_booking,
    get_current_user,
    get_hotel_info_client,
    get_tax_rules,
)
from app.routers.booking import router
from app.scopes import AccountScope, BookingScope

from .factories import GUEST_ID, make_front_desk, make_guest

CRUD_PATH = "app.routers.booking.booking_crud"
LEDGER_PATH = "app.routers.accounts.ledger_crud"


def _make_anon_app_with_scope_passthrough() -> FastAPI:
    """
    App that uses the real get_current_user dep but ignores scope checks
    (scope check is replaced with a passthrough that still calls get_current_user).
    """
    app = FastAPI()
    app.include_router(router)

    async def _passthrough(user=Depends(get_current_user)):
        return user

    app.dependency_overrides[can_read_or_manage_booking] = _passthrough
    return app


class TestGetCurrentUser:
    def test_valid_headers_authenticate(self):
        """get_current_user reads gateway headers and returns CurrentUser."""
        app = _make_anon_app_with_scope_passthrough()
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.list_bookings = AsyncMock(return_value=[])
            with TestClient(app) as c:
                resp = c.get(
                    "/bookings/",
                    headers={
                        "X-User-Id": str(GUEST_ID),
                        "X-Username": "guest1",
                        "X-User-Scopes": "bookings:read",
                    },
                )
        assert resp.status_code == 200

    def test_invalid_user_id_returns_401(self):
        app = _make_anon_app_with_scope_passthrough()
        with TestClient(app) as c:
            resp = c.get(
                "/bookings/",
                headers={
                    "X-User-Id": "not-a-uuid",
                    "X-Username": "guest1",
                    "X-User-Scopes": "",
                },
            )
        assert resp.status_code == 401

    def test_username_is_url_decoded(self):
        app = _make_anon_app_with_scope_passthrough()
        captured = {}

        async def _capture(user=Depends(get_current_user)):
            captured["user"] = user
            return user

        app.dependency_overrides[can_read_or_manage_booking] = _capture
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.list_bookings = AsyncMock(return_value=[])
            with TestClient(app) as c:
                c.get(
                    "/bookings/",
                    headers={
                        "X-User-Id": str(GUEST_ID),
                        "X-Username": "Asha%20Rao",
                        "X-User-Scopes": "bookings:read bookings:write",
                    },
                )
        assert captured["user"].username == "Asha Rao"
        assert captured["user"].scopes == ["bookings:read", "bookings:write"]

    def test_empty_scopes_string_parsed_as_empty_list(self):
        app = _make_anon_app_with_scope_passthrough()
        captured = {}

        async def _capture(user=Depends(get_current_user)):
            captured["user"] = user
            return user

        app.dependency_overrides[can_read_or_manage_booking] = _capture
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.list_bookings = AsyncMock(return_value=[])
            with TestClient(app) as c:
                c.get(
                    "/bookings/",
                    headers={
                        "X-User-Id": str(GUEST_ID),
                        "X-Username": "u",
                        "X-User-Scopes": "",
                    },
                )
        assert captured["user"].scopes == []


class TestCanReadOrManageBooking:
    def _app_for(self, current_user) -> FastAPI:
        app = FastAPI()
        app.include_router(router)

        async def _user():
            return current_user

        app.dependency_overrides[get_current_user] = _user
        return app

    def test_guest_with_read_scope_passes(self):
        app = self._app_for(make_guest())
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.list_bookings = AsyncMock(return_value=[])
            with TestClient(app) as c:
                resp = c.get("/bookings/")
        assert resp.status_code == 200

    def test_front_desk_with_manage_scope_passes(self):
        app = self._app_for(make_front_desk())
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.list_bookings = AsyncMock(return_value=[])
            with TestClient(app) as c:
                resp = c.get("/bookings/")
        assert resp.status_code == 200

    def test_user_with_no_relevant_scope_gets_403(self):
        app = self._app_for(make_guest(scopes=["billing:read"]))
        with TestClient(app) as c:
            resp = c.get("/bookings/")
        assert resp.status_code == 403


class TestRequireScopes:
    def _accounts_app(self, current_user) -> FastAPI:
        from app.routers.accounts import router as accounts_router

        app = FastAPI()
        app.include_router(accounts_router)

        async def _user():
            return current_user

        app.dependency_overrides[get_current_user] = _user
        return app

    def test_scope_present_passes(self):
        app = self._accounts_app(make_front_desk())
        with patch(LEDGER_PATH) as mock_ledger:
            mock_ledger.list_accounts = AsyncMock(return_value=[])
            with TestClient(app) as c:
                resp = c.get("/accounts/")
        assert resp.status_code == 200

    def test_missing_scope_lists_it(self):
        app = self._accounts_app(make_front_desk())
        with TestClient(app) as c:
            resp = c.post(
                "/accounts/transfer",
                json={
                    "from_account_id": str(uuid4()),
                    "to_account_id": str(uuid4()),
                    "amount": "10.00",
                    "description": "Float top-up",
                },
            )
        assert resp.status_code == 403
        assert AccountScope.MANAGE in resp.json()["detail"]

    def test_admin_bypasses_scope_checks(self):
        admin = CurrentUser(id=uuid4(), username="root", scopes=["admin:scopes"])
        app = self._accounts_app(admin)
        with patch(LEDGER_PATH) as mock_ledger:
            mock_ledger.list_accounts = AsyncMock(return_value=[])
            with TestClient(app) as c:
                resp = c.get("/accounts/")
        assert resp.status_code == 200


class TestCurrentUserRoles:
    def test_is_admin_true_when_has_admin_scope(self):
        user = CurrentUser(id=uuid4(), username="admin", scopes=["admin:scopes"])
        assert user.is_admin is True

    def test_booking_admin_scope_is_admin(self):
        user = CurrentUser(id=uuid4(), username="a", scopes=[BookingScope.ADMIN])
        assert user.is_admin is True

    def test_is_admin_false_without_admin_scope(self):
        assert make_guest().is_admin is False

    def test_front_desk_is_staff(self):
        assert make_front_desk().is_staff is True

    def test_guest_is_not_staff(self):
        assert make_guest().is_staff is False


class TestHotelInfoClient:
    def test_returns_hotel_info_client_instance(self):
        assert isinstance(get_hotel_info_client(), HotelInfoClient)

    def test_same_instance_returned_each_time(self):
        assert get_hotel_info_client() is get_hotel_info_client()

    def test_client_property_returns_async_client(self):
        """Accessing ._client triggers the lru_cache factory."""
        assert isinstance(HotelInfoClient()._client, httpx.AsyncClient)

    @pytest.mark.anyio
    async def test_get_tax_rules_returns_list(self, anyio_backend):
        response = MagicMock()
        response.raise_for_status = MagicMock()
        response.json = MagicMock(return_value=[{"name": "GST", "percentage": 18}])
        http = MagicMock()
        http.get = AsyncMock(return_value=response)
        with patch("app.deps._get_hotel_info_http_client", return_value=http):
            rules = await HotelInfoClient().get_tax_rules()
        assert rules == [{"name": "GST", "percentage": 18}]
        http.get.assert_awaited_once_with("/hotel-info/taxes")

    @pytest.mark.anyio
    async def test_non_list_payload_raises(self, anyio_backend):
        response = MagicMock()
        response.raise_for_status = MagicMock()
        response.json = MagicMock(return_value={"taxes": []})
        http = MagicMock()
        http.get = AsyncMock(return_value=response)
        with patch("app.deps._get_hotel_info_http_client", return_value=http):
            with pytest.raises(ValueError):
                await HotelInfoClient().get_tax_rules()

    @pytest.mark.anyio
    async def test_get_tax_rules_dependency_resolves(self, anyio_backend):
        client = MagicMock()
        client.get_tax_rules = AsyncMock(return_value=[{"name": "VAT", "percentage": "5"}])
        with (
            patch("app.pricing.get_tax_rules_cache", AsyncMock(return_value=None)),
            patch("app.pricing.set_tax_rules_cache", AsyncMock()),
        ):
            rule_set = await get_tax_rules(hotel_info_client=client)
        assert rule_set.fallback is False
        assert rule_set.rules[0].percentage == Decimal("5")
