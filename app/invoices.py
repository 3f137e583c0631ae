"""
Invoices: one per booking, numbered ``<prefix>-NNNNNN``.

An invoice copies the guest, stay and pricing snapshot off the booking when it
is issued, so later edits to the booking never rewrite a bill already sent.
"""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from app import settings
from app.errors import BookingValidationError, TemporaryFailureError
from app.models import Booking, BookingStatus, Invoice, Room, RoomType
from app.schemas import InvoiceCreate, InvoiceResponse


def invoice_number(sequence: int, prefix: str | None = None) -> str:
    return f"{prefix or settings.INVOICE_PREFIX}-{sequence:06d}"


def _to_response(inst: Invoice) -> InvoiceResponse:
    return InvoiceResponse.model_validate(inst, from_attributes=True)


class InvoiceCRUD:
    async def get_invoice(self, invoice_id: UUID) -> InvoiceResponse | None:
        inst = await Invoice.get_or_none(id=invoice_id)
        return _to_response(inst) if inst else None

    async def get_for_booking(self, booking_id: UUID) -> InvoiceResponse | None:
        inst = await Invoice.get_or_none(booking_id=booking_id)
        return _to_response(inst) if inst else None

    async def generate_invoice(
        self,
        booking_id: UUID,
        payload: InvoiceCreate,
        issued_by: str,
    ) -> InvoiceResponse | None:
        """
        Issue the invoice for a booking, or return the one already issued.

        The booking row is locked while the invoice is written, so two issuers
        never bill the same booking twice. A number taken by a concurrent
        issuer is retried with the next sequence. Returns None when the
        booking does not exist.
        """
        for attempt in range(1, settings.INVOICE_NUMBER_ATTEMPTS + 1):
            try:
                async with in_transaction():
                    booking = (
                        await Booking.filter(id=booking_id).select_for_update().first()
                    )
                    if booking is None:
                        return None
                    existing = await Invoice.get_or_none(booking_id=booking.id)
                    if existing is not None:
                        return _to_response(existing)
                    if booking.status == BookingStatus.CANCELLED:
                        raise BookingValidationError(
                            "A cancelled booking cannot be invoiced",
                            booking_id=str(booking.id),
                        )

                    room_type = await RoomType.get(id=booking.room_type_id)
                    room = await Room.get(id=booking.room_id)
                    number = invoice_number(await Invoice.all().count() + attempt)
                    inst = await Invoice.create(
                        invoice_number=number,
                        booking_id=booking.id,
                        guest_name=booking.guest_name,
                        guest_email=booking.guest_email,
                        guest_phone=booking.guest_phone,
                        check_in=booking.check_in,
                        check_out=booking.check_out,
                        nights=booking.nights,
                        adults=booking.adults,
                        children=booking.children,
                        room_type_name=room_type.name,
                        room_number=room.number,
                        original_amount=booking.original_amount,
                        discount_amount=booking.discount_amount,
                        base_amount=booking.base_amount,
                        taxes=booking.taxes,
                        total_tax_amount=booking.total_tax_amount,
                        total_amount=booking.total_amount,
                        due_date=payload.due_date or booking.check_in,
                        notes=payload.notes,
                        terms=payload.terms or settings.INVOICE_DEFAULT_TERMS,
                        issued_by=issued_by,
                    )
            except IntegrityError:
                existing = await Invoice.get_or_none(booking_id=booking_id)
                if existing is not None:
                    return _to_response(existing)
                logger.warning(
                    "Invoice number collision for booking {} (attempt {}/{})",
                    booking_id,
                    attempt,
                    settings.INVOICE_NUMBER_ATTEMPTS,
                )
                continue

            logger.info(
                "Invoice {} issued for booking {} total={}",
                inst.invoice_number,
                booking_id,
                inst.total_amount,
            )
            return _to_response(inst)

        raise TemporaryFailureError("Could not allocate an invoice number, please retry")


invoice_crud = InvoiceCRUD()
