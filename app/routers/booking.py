from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from app.crud import VALID_TRANSITIONS, booking_crud
from app.deps import (
    CurrentUser,
    can_manage_booking,
    can_read_or_manage_booking,
    can_write_billing,
    can_write_booking,
    get_current_user,
    get_tax_rules,
)
from app.errors import InvalidTransitionError
from app.models import BookingStatus
from app.schemas import (
    BookingCreate,
    BookingFilters,
    BookingQuote,
    BookingQuoteRequest,
    BookingResponse,
    BookingStatusUpdate,
    BookingUpdate,
    PaymentStatusUpdate,
    PriceDelta,
    TaxRuleSet,
)
from app.scopes import BookingScope

router = APIRouter(prefix="/bookings", tags=["bookings"])


# ---------------------------------------------------------------------------
# Transition guard helpers
# ---------------------------------------------------------------------------

# Guests may only cancel; every other transition is a front-desk action
_GUEST_STATUSES = {BookingStatus.CANCELLED}


def _assert_transition(
    old_status: BookingStatus,
    new_status: BookingStatus,
    booking_user_id: UUID | None,
    current_user: CurrentUser,
) -> None:
    """
    Raise HTTP 400/403 if the transition is invalid or the caller lacks permission.

    Rules:
      pending    → confirmed   : MANAGE, OR admin
      confirmed  → checked_in  : MANAGE, OR admin
      checked_in → checked_out : MANAGE, OR admin
      any active → cancelled   : CANCEL + booker, OR MANAGE, OR admin
    """
    allowed = VALID_TRANSITIONS.get(old_status, set())
    if new_status not in allowed:
        raise InvalidTransitionError(
            f"Cannot transition from '{old_status}' to '{new_status}'",
            allowed=sorted(s.value for s in allowed),
        )

    if current_user.is_staff:
        return

    is_booker = booking_user_id is not None and current_user.id == booking_user_id
    has_cancel = BookingScope.CANCEL in current_user.scopes
    if new_status in _GUEST_STATUSES and has_cancel and is_booker:
        return

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=(
            f"Transitioning to '{new_status}' requires '{BookingScope.MANAGE}' scope, "
            f"or '{BookingScope.CANCEL}' scope as the guest who booked."
        ),
    )


async def _load_for_transition(booking_id: UUID) -> BookingResponse:
    # Fetch without ownership filter: permissions are validated manually
    booking = await booking_crud.get_booking(booking_id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return booking


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/quote", response_model=BookingQuote)
async def quote_booking(
    payload: BookingQuoteRequest,
    _: CurrentUser = Depends(can_write_booking),
    tax_rules: TaxRuleSet = Depends(get_tax_rules),
) -> BookingQuote:
    """Price a stay and report availability. Nothing is reserved."""
    quote = await booking_crud.quote_booking(payload, tax_rules)
    if quote is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Room type not found"
        )
    return quote


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    filters: BookingFilters = Depends(),
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> list[BookingResponse]:
    if current_user.is_staff:
        return await booking_crud.list_bookings(filters=filters)
    return await booking_crud.list_bookings(filters=filters, user_id=current_user.id)


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(can_write_booking),
    tax_rules: TaxRuleSet = Depends(get_tax_rules),
) -> BookingResponse:
    booking = await booking_crud.create_booking(
        payload, tax_rules, user_id=current_user.id
    )
    if booking is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Room type not found"
        )
    return booking


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_or_manage_booking),
) -> BookingResponse:
    if current_user.is_staff:
        booking = await booking_crud.get_booking(booking_id)
    else:
        booking = await booking_crud.get_booking(booking_id, user_id=current_user.id)

    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return booking


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: UUID,
    payload: BookingUpdate,
    _: CurrentUser = Depends(can_manage_booking),
    tax_rules: TaxRuleSet = Depends(get_tax_rules),
) -> BookingResponse:
    """Edit guest details, occupancy, room type or dates. Stay changes reprice."""
    updated = await booking_crud.update_booking(booking_id, payload, tax_rules)
    if not updated:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking or room type not found"
        )
    return updated


@router.post("/{booking_id}/preview", response_model=PriceDelta)
async def preview_update(
    booking_id: UUID,
    payload: BookingUpdate,
    _: CurrentUser = Depends(can_manage_booking),
    tax_rules: TaxRuleSet = Depends(get_tax_rules),
) -> PriceDelta:
    """Upgrade/downgrade price delta for an edit, before committing it."""
    delta = await booking_crud.preview_update(booking_id, payload, tax_rules)
    if not delta:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking or room type not found"
        )
    return delta


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    payload: BookingStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    booking = await _load_for_transition(booking_id)
    _assert_transition(
        old_status=booking.status,
        new_status=payload.status,
        booking_user_id=booking.user_id,
        current_user=current_user,
    )

    updated = await booking_crud.update_booking_status(booking_id, payload)
    if not updated:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return updated


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    """Cancel and release the room. The booking record is kept."""
    booking = await _load_for_transition(booking_id)
    _assert_transition(
        old_status=booking.status,
        new_status=BookingStatus.CANCELLED,
        booking_user_id=booking.user_id,
        current_user=current_user,
    )

    cancelled = await booking_crud.cancel_booking(booking_id)
    if not cancelled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return cancelled


@router.patch("/{booking_id}/payment-status", response_model=BookingResponse)
async def update_payment_status(
    booking_id: UUID,
    payload: PaymentStatusUpdate,
    current_user: CurrentUser = Depends(can_write_billing),
) -> BookingResponse:
    updated = await booking_crud.update_payment_status(
        booking_id, payload, processed_by=current_user.username
    )
    if not updated:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )
    return updated
