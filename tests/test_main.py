from __future__ import annotations

from fastapi.testclient import TestClient

from app.errors import BookingValidationError, LedgerError, PromoRejectedError
from app.main import app


def test_health():
    # No context manager: the lifespan (database, redis) is not started
    resp = TestClient(app).get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_all_routers_mounted():
    paths = set(app.openapi()["paths"])
    for expected in (
        "/bookings/",
        "/bookings/quote",
        "/bookings/{booking_id}/invoice",
        "/invoices/{invoice_id}",
        "/payments/",
        "/accounts/transfer",
        "/accounts/user-accounts",
        "/reports/revenue",
        "/room-types/",
        "/rooms/available",
        "/promo-codes/validate",
        "/calculate-taxes",
        "/tax-rules/cache",
    ):
        assert expected in paths


def test_validation_errors_render_as_422():
    assert BookingValidationError("bad dates").status_code == 422
    assert PromoRejectedError("expired", "Promo code has expired").status_code == 422
    assert LedgerError("Account not found").status_code == 422
