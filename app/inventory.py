from __future__ import annotations

from datetime import date
from uuid import UUID

from tortoise.transactions import in_transaction

from app import allocator
from app.errors import BookingValidationError, InvalidTransitionError
from app.models import Room, RoomStatus, RoomType
from app.schemas import (
    RoomCreate,
    RoomResponse,
    RoomTypeAvailability,
    RoomTypeCreate,
    RoomTypeResponse,
)

# Ops may only move a room between these; "occupied" belongs to the booking flow
_OPS_TRANSITIONS: dict[RoomStatus, set[RoomStatus]] = {
    RoomStatus.AVAILABLE: {RoomStatus.MAINTENANCE},
    RoomStatus.MAINTENANCE: {RoomStatus.AVAILABLE},
    RoomStatus.OCCUPIED: set(),
}


class InventoryCRUD:
    async def create_room_type(self, payload: RoomTypeCreate) -> RoomTypeResponse:
        if await RoomType.exists(name=payload.name):
            raise BookingValidationError(f"Room type '{payload.name}' already exists")
        inst = await RoomType.create(**payload.model_dump())
        return RoomTypeResponse.model_validate(inst, from_attributes=True)

    async def get_room_type(self, room_type_id: UUID) -> RoomType | None:
        return await RoomType.get_or_none(id=room_type_id)

    async def list_room_types(
        self,
        check_in: date | None = None,
        check_out: date | None = None,
    ) -> list[RoomTypeAvailability]:
        """
        Catalogue with per-type availability. Without a window, availability is
        the count of rooms currently in the ``available`` state.
        """
        result = []
        for rt in await RoomType.all():
            if check_in is not None and check_out is not None:
                count = await allocator.available_count(rt.id, check_in, check_out)
            else:
                count = await Room.filter(
                    room_type_id=rt.id, status=RoomStatus.AVAILABLE
                ).count()
            result.append(
                RoomTypeAvailability(
                    **RoomTypeResponse.model_validate(rt, from_attributes=True).model_dump(),
                    available_rooms=count,
                )
            )
        return result

    async def create_room(self, payload: RoomCreate) -> RoomResponse | None:
        async with in_transaction():
            room_type = (
                await RoomType.filter(id=payload.room_type_id).select_for_update().first()
            )
            if room_type is None:
                return None
            if await Room.exists(number=payload.number):
                raise BookingValidationError(f"Room {payload.number} already exists")
            room = await Room.create(
                number=payload.number,
                floor=payload.floor,
                room_type_id=room_type.id,
            )
            room_type.total_rooms += 1
            await room_type.save(update_fields=["total_rooms"])
        return RoomResponse.model_validate(room, from_attributes=True)

    async def list_available_rooms(
        self,
        room_type_id: UUID,
        check_in: date,
        check_out: date,
        exclude_booking_id: UUID | None = None,
    ) -> list[RoomResponse]:
        rooms = await allocator.find_free_rooms(
            room_type_id, check_in, check_out, exclude_booking_id=exclude_booking_id
        )
        return [RoomResponse.model_validate(r, from_attributes=True) for r in rooms]

    async def set_room_status(
        self, room_id: UUID, new_status: RoomStatus
    ) -> RoomResponse | None:
        async with in_transaction():
            room = await Room.filter(id=room_id).select_for_update().first()
            if room is None:
                return None
            if room.status != new_status:
                allowed = _OPS_TRANSITIONS[room.status]
                if new_status not in allowed:
                    raise InvalidTransitionError(
                        f"Cannot move room {room.number} from '{room.status}' "
                        f"to '{new_status}'. Allowed: {sorted(s.value for s in allowed)}"
                    )
                room.status = new_status
                await room.save(update_fields=["status", "updated_at"])
        return RoomResponse.model_validate(room, from_attributes=True)


inventory_crud = InventoryCRUD()
