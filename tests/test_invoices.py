"""
Invoices: endpoint tests with the CRUD layer patched, then InvoiceCRUD
against in-memory SQLite.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.crud import booking_crud
from app.deps import get_current_user
from app.errors import BookingValidationError
from app.invoices import invoice_crud, invoice_number
from app.models import Invoice
from app.schemas import BookingCreate, BookingUpdate, InvoiceCreate

from .factories import (
    BOOKING_ID,
    CHECK_IN,
    GUEST_ID,
    INVOICE_ID,
    NOW,
    TODAY,
    booking_create_payload,
    create_room_type,
    invoice_response,
    make_guest,
    tax_rule_set,
)

CRUD_PATH = "app.routers.invoices.invoice_crud"


# ---------------------------------------------------------------------------
# /bookings/{booking_id}/invoice and /invoices/{invoice_id}
# ---------------------------------------------------------------------------


class TestInvoiceEndpoints:
    def test_generate_returns_201(self, desk_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.generate_invoice = AsyncMock(return_value=invoice_response())
            resp = desk_client.post(f"/bookings/{BOOKING_ID}/invoice")
        assert resp.status_code == 201
        assert resp.json()["invoice_number"] == "INV-000001"
        args, kwargs = mock_crud.generate_invoice.call_args
        assert args[0] == BOOKING_ID
        assert args[1] == InvoiceCreate()
        assert kwargs["issued_by"] == "frontdesk"

    def test_generate_forwards_terms(self, desk_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.generate_invoice = AsyncMock(
                return_value=invoice_response(terms="Net 15")
            )
            resp = desk_client.post(
                f"/bookings/{BOOKING_ID}/invoice", json={"terms": "Net 15"}
            )
        assert resp.status_code == 201
        args, _ = mock_crud.generate_invoice.call_args
        assert args[1].terms == "Net 15"

    def test_generate_unknown_booking_returns_404(self, desk_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.generate_invoice = AsyncMock(return_value=None)
            resp = desk_client.post(f"/bookings/{uuid4()}/invoice")
        assert resp.status_code == 404

    def test_cancelled_booking_returns_422(self, desk_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.generate_invoice = AsyncMock(
                side_effect=BookingValidationError("A cancelled booking cannot be invoiced")
            )
            resp = desk_client.post(f"/bookings/{BOOKING_ID}/invoice")
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "validation_error"

    def test_get_booking_invoice(self, desk_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.get_for_booking = AsyncMock(return_value=invoice_response())
            resp = desk_client.get(f"/bookings/{BOOKING_ID}/invoice")
        assert resp.status_code == 200
        mock_crud.get_for_booking.assert_awaited_once_with(BOOKING_ID)

    def test_get_invoice(self, desk_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.get_invoice = AsyncMock(return_value=invoice_response())
            resp = desk_client.get(f"/invoices/{INVOICE_ID}")
        assert resp.status_code == 200
        assert resp.json()["total_amount"] == "9558.00"

    def test_get_missing_invoice_returns_404(self, desk_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.get_invoice = AsyncMock(return_value=None)
            resp = desk_client.get(f"/invoices/{uuid4()}")
        assert resp.status_code == 404

    def test_guest_cannot_generate_returns_403(self, anon_app):
        async def _guest():
            return make_guest()

        anon_app.dependency_overrides[get_current_user] = _guest
        with TestClient(anon_app) as c:
            resp = c.post(f"/bookings/{BOOKING_ID}/invoice")
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# InvoiceCRUD (database)
# ---------------------------------------------------------------------------


async def _booking(**overrides):
    room_type = await create_room_type()
    return await booking_crud.create_booking(
        BookingCreate(**booking_create_payload(room_type_id=str(room_type.id), **overrides)),
        tax_rule_set(),
        user_id=GUEST_ID,
        today=TODAY,
        now=NOW,
    )


def test_invoice_number_is_zero_padded():
    assert invoice_number(1) == "INV-000001"
    assert invoice_number(42, prefix="HTL") == "HTL-000042"


@pytest.mark.anyio
class TestInvoiceCRUD:
    async def test_snapshot_copied_from_booking(self, db):
        booking = await _booking()
        invoice = await invoice_crud.generate_invoice(
            booking.id, InvoiceCreate(), issued_by="frontdesk"
        )
        assert invoice.invoice_number == "INV-000001"
        assert invoice.booking_id == booking.id
        assert invoice.room_type_name == "Deluxe"
        assert invoice.room_number == "101"
        assert invoice.total_amount == Decimal("9558.00")
        assert invoice.taxes[0].amount == Decimal("1458.00")
        assert invoice.due_date == CHECK_IN
        assert invoice.terms == "Payment due upon receipt"

    async def test_second_call_returns_same_invoice(self, db):
        booking = await _booking()
        first = await invoice_crud.generate_invoice(
            booking.id, InvoiceCreate(), issued_by="frontdesk"
        )
        second = await invoice_crud.generate_invoice(
            booking.id, InvoiceCreate(notes="again"), issued_by="admin"
        )
        assert second.id == first.id
        assert second.invoice_number == first.invoice_number
        assert await Invoice.filter(booking_id=booking.id).count() == 1

    async def test_concurrent_calls_issue_one_invoice(self, db):
        booking = await _booking()
        results = await asyncio.gather(
            invoice_crud.generate_invoice(booking.id, InvoiceCreate(), issued_by="a"),
            invoice_crud.generate_invoice(booking.id, InvoiceCreate(), issued_by="b"),
        )
        assert results[0].id == results[1].id
        assert await Invoice.all().count() == 1

    async def test_numbers_follow_sequence(self, db):
        first = await _booking()
        room_type = await create_room_type(name="Suite", rooms=("201",))
        second = await booking_crud.create_booking(
            BookingCreate(**booking_create_payload(room_type_id=str(room_type.id))),
            tax_rule_set(),
            today=TODAY,
            now=NOW,
        )
        a = await invoice_crud.generate_invoice(first.id, InvoiceCreate(), issued_by="x")
        b = await invoice_crud.generate_invoice(second.id, InvoiceCreate(), issued_by="x")
        assert (a.invoice_number, b.invoice_number) == ("INV-000001", "INV-000002")

    async def test_custom_due_date_and_terms(self, db):
        booking = await _booking()
        due = CHECK_IN - timedelta(days=3)
        invoice = await invoice_crud.generate_invoice(
            booking.id,
            InvoiceCreate(due_date=due, terms="Net 15", notes="Corporate"),
            issued_by="frontdesk",
        )
        assert invoice.due_date == due
        assert invoice.terms == "Net 15"
        assert invoice.notes == "Corporate"

    async def test_later_booking_edit_does_not_change_invoice(self, db):
        booking = await _booking()
        invoice = await invoice_crud.generate_invoice(
            booking.id, InvoiceCreate(), issued_by="frontdesk"
        )
        await booking_crud.update_booking(
            booking.id, BookingUpdate(guest_name="Someone Else"), tax_rule_set(), today=TODAY
        )
        stored = await invoice_crud.get_invoice(invoice.id)
        assert stored.guest_name == "Asha Rao"

    async def test_cancelled_booking_cannot_be_invoiced(self, db):
        booking = await _booking()
        await booking_crud.cancel_booking(booking.id)
        with pytest.raises(BookingValidationError):
            await invoice_crud.generate_invoice(
                booking.id, InvoiceCreate(), issued_by="frontdesk"
            )
        assert await Invoice.all().count() == 0

    async def test_unknown_booking_returns_none(self, db):
        assert await invoice_crud.generate_invoice(
            uuid4(), InvoiceCreate(), issued_by="frontdesk"
        ) is None

    async def test_lookup_by_booking(self, db):
        booking = await _booking()
        assert await invoice_crud.get_for_booking(booking.id) is None
        invoice = await invoice_crud.generate_invoice(
            booking.id, InvoiceCreate(), issued_by="frontdesk"
        )
        assert (await invoice_crud.get_for_booking(booking.id)).id == invoice.id
