"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files: pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from tortoise import Tortoise

from app.deps import (
    can_manage_accounts,
    can_manage_booking,
    can_manage_inventory,
    can_read_accounts,
    can_read_billing,
    can_read_or_manage_booking,
    can_write_billing,
    can_write_booking,
    get_current_user,
    get_hotel_info_client,
    get_tax_rules,
)
from app.routers import (
    accounts,
    booking,
    invoices,
    payments,
    promo,
    reports,
    rooms,
    taxes,
)

from .factories import make_admin, make_front_desk, make_guest, tax_rule_set

ROUTERS = (
    booking.router,
    payments.router,
    accounts.router,
    invoices.router,
    reports.router,
    rooms.room_types_router,
    rooms.rooms_router,
    promo.router,
    taxes.router,
)


# ---------------------------------------------------------------------------
# Default no-op client mock: prevents real HTTP calls in tests
# ---------------------------------------------------------------------------


def _noop_hotel_info_client():
    mock = MagicMock()
    mock.get_tax_rules = AsyncMock(return_value=[])
    return mock


def _include_routers(app: FastAPI) -> FastAPI:
    for router in ROUTERS:
        app.include_router(router)
    return app


# ---------------------------------------------------------------------------
# App builder: used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(current_user, tax_rules=None, hotel_info_client=None) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally.

    Tax rules default to a single 18% GST rule so no cache or upstream
    service is touched.
    """
    app = _include_routers(FastAPI())

    async def _user():
        return current_user

    for dep in (
        can_read_or_manage_booking,
        can_write_booking,
        can_manage_booking,
        can_read_billing,
        can_write_billing,
        can_read_accounts,
        can_manage_accounts,
        can_manage_inventory,
        get_current_user,
    ):
        app.dependency_overrides[dep] = _user

    rules = tax_rules if tax_rules is not None else tax_rule_set()
    hc = hotel_info_client if hotel_info_client is not None else _noop_hotel_info_client()
    app.dependency_overrides[get_tax_rules] = lambda: rules
    app.dependency_overrides[get_hotel_info_client] = lambda: hc

    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def guest_client():
    return TestClient(build_app(make_guest()), raise_server_exceptions=True)


@pytest.fixture()
def desk_client():
    return TestClient(build_app(make_front_desk()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    App with only tax rules overridden.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    app = _include_routers(FastAPI())
    app.dependency_overrides[get_tax_rules] = lambda: tax_rule_set()
    return app


@pytest.fixture()
def client_factory():
    def _make(current_user, tax_rules=None, hotel_info_client=None) -> TestClient:
        return TestClient(
            build_app(
                current_user,
                tax_rules=tax_rules,
                hotel_info_client=hotel_info_client,
            ),
            raise_server_exceptions=True,
        )

    return _make


# ---------------------------------------------------------------------------
# Database: in-memory SQLite, fresh schema per test
# ---------------------------------------------------------------------------


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
async def db():
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": ["app.models"]})
    await Tortoise.generate_schemas()
    yield
    await Tortoise._drop_databases()
