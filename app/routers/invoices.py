from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from app.deps import CurrentUser, can_read_billing, can_write_billing
from app.invoices import invoice_crud
from app.schemas import InvoiceCreate, InvoiceResponse

router = APIRouter(tags=["invoices"])


@router.post(
    "/bookings/{booking_id}/invoice",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_invoice(
    booking_id: UUID,
    payload: InvoiceCreate | None = None,
    current_user: CurrentUser = Depends(can_write_billing),
) -> InvoiceResponse:
    """Issue the booking's invoice. Repeating the call returns the same invoice."""
    invoice = await invoice_crud.generate_invoice(
        booking_id, payload or InvoiceCreate(), issued_by=current_user.username
    )
    if not invoice:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return invoice


@router.get("/bookings/{booking_id}/invoice", response_model=InvoiceResponse)
async def get_booking_invoice(
    booking_id: UUID,
    _: CurrentUser = Depends(can_read_billing),
) -> InvoiceResponse:
    invoice = await invoice_crud.get_for_booking(booking_id)
    if not invoice:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found"
        )
    return invoice


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: UUID,
    _: CurrentUser = Depends(can_read_billing),
) -> InvoiceResponse:
    invoice = await invoice_crud.get_invoice(invoice_id)
    if not invoice:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found"
        )
    return invoice
