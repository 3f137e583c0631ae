from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.deps import CurrentUser, can_read_billing, can_write_billing
from app.ledger import ledger_crud
from app.schemas import PaymentCreate, PaymentResult, PaymentSummary, PaymentUpdate

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/", response_model=PaymentSummary)
async def payment_summary(
    booking_id: UUID = Query(...),
    _: CurrentUser = Depends(can_read_billing),
) -> PaymentSummary:
    summary = await ledger_crud.payment_summary(booking_id)
    if not summary:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return summary


@router.post("/", response_model=PaymentResult, status_code=status.HTTP_201_CREATED)
async def record_payment(
    payload: PaymentCreate,
    current_user: CurrentUser = Depends(can_write_billing),
) -> PaymentResult:
    result = await ledger_crud.record_payment(payload, received_by=current_user.username)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return result


@router.put("/{payment_id}", response_model=PaymentResult)
async def edit_payment(
    payment_id: UUID,
    payload: PaymentUpdate,
    current_user: CurrentUser = Depends(can_write_billing),
) -> PaymentResult:
    """Change a payment's amount. The old entry is compensated, never rewritten."""
    result = await ledger_crud.edit_payment(
        payment_id, payload, processed_by=current_user.username
    )
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found"
        )
    return result


@router.delete("/{payment_id}", response_model=PaymentResult)
async def delete_payment(
    payment_id: UUID,
    reason: str | None = Query(default=None, max_length=500),
    current_user: CurrentUser = Depends(can_write_billing),
) -> PaymentResult:
    result = await ledger_crud.delete_payment(
        payment_id, reason, processed_by=current_user.username
    )
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found"
        )
    return result
