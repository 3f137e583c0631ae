from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.deps import CurrentUser, can_manage_inventory, get_current_user
from app.inventory import inventory_crud
from app.schemas import (
    RoomCreate,
    RoomResponse,
    RoomStatusUpdate,
    RoomTypeAvailability,
    RoomTypeCreate,
    RoomTypeResponse,
)

room_types_router = APIRouter(prefix="/room-types", tags=["rooms"])
rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def _assert_window(check_in: date | None, check_out: date | None) -> None:
    if (check_in is None) != (check_out is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="check_in and check_out must be given together",
        )
    if check_in is not None and check_out <= check_in:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="check_out must be after check_in",
        )


# ---------------------------------------------------------------------------
# Room types
# ---------------------------------------------------------------------------


@room_types_router.get("/", response_model=list[RoomTypeAvailability])
async def list_room_types(
    check_in: date | None = Query(default=None),
    check_out: date | None = Query(default=None),
    _: CurrentUser = Depends(get_current_user),
) -> list[RoomTypeAvailability]:
    """Catalogue with availability, for a stay window when one is given."""
    _assert_window(check_in, check_out)
    return await inventory_crud.list_room_types(check_in, check_out)


@room_types_router.post(
    "/", response_model=RoomTypeResponse, status_code=status.HTTP_201_CREATED
)
async def create_room_type(
    payload: RoomTypeCreate,
    _: CurrentUser = Depends(can_manage_inventory),
) -> RoomTypeResponse:
    return await inventory_crud.create_room_type(payload)


# ---------------------------------------------------------------------------
# Rooms
# ---------------------------------------------------------------------------


@rooms_router.post("/", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(
    payload: RoomCreate,
    _: CurrentUser = Depends(can_manage_inventory),
) -> RoomResponse:
    room = await inventory_crud.create_room(payload)
    if not room:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Room type not found"
        )
    return room


@rooms_router.get("/available", response_model=list[RoomResponse])
async def list_available_rooms(
    room_type_id: UUID = Query(...),
    check_in: date = Query(...),
    check_out: date = Query(...),
    exclude_booking_id: UUID | None = Query(default=None),
    _: CurrentUser = Depends(can_manage_inventory),
) -> list[RoomResponse]:
    _assert_window(check_in, check_out)
    return await inventory_crud.list_available_rooms(
        room_type_id, check_in, check_out, exclude_booking_id=exclude_booking_id
    )


@rooms_router.patch("/{room_id}/status", response_model=RoomResponse)
async def set_room_status(
    room_id: UUID,
    payload: RoomStatusUpdate,
    _: CurrentUser = Depends(can_manage_inventory),
) -> RoomResponse:
    """Take a room out of service or put it back. Occupancy is booking-driven."""
    room = await inventory_crud.set_room_status(room_id, payload.status)
    if not room:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Room not found"
        )
    return room
