"""
Room allocation.

Every function here runs inside the caller's ``in_transaction()`` block; the
availability re-check, the row locks and the status flip must share one
transaction boundary so two requests for the last room cannot both win.
"""

from __future__ import annotations

import re
from datetime import date
from uuid import UUID

from loguru import logger

from app.errors import RoomTakenError
from app.models import ACTIVE_BOOKING_STATUSES, Booking, Room, RoomStatus

_DIGITS = re.compile(r"(\d+)")


def room_number_key(number: str) -> list:
    """Natural sort key so that room "102" sorts before room "1010"."""
    return [int(part) if part.isdigit() else part for part in _DIGITS.split(number)]


async def busy_room_ids(
    room_ids: list[UUID],
    check_in: date,
    check_out: date,
    exclude_booking_id: UUID | None = None,
) -> set[UUID]:
    """Rooms among ``room_ids`` held by an active booking overlapping [check_in, check_out)."""
    if not room_ids:
        return set()
    qs = Booking.filter(
        room_id__in=room_ids,
        status__in=ACTIVE_BOOKING_STATUSES,
        check_in__lt=check_out,
        check_out__gt=check_in,
    )
    if exclude_booking_id is not None:
        qs = qs.exclude(id=exclude_booking_id)
    return set(await qs.values_list("room_id", flat=True))


async def find_free_rooms(
    room_type_id: UUID,
    check_in: date,
    check_out: date,
    *,
    exclude_booking_id: UUID | None = None,
    exclude_room_id: UUID | None = None,
    lock: bool = False,
) -> list[Room]:
    qs = Room.filter(room_type_id=room_type_id, status=RoomStatus.AVAILABLE)
    if exclude_room_id is not None:
        qs = qs.exclude(id=exclude_room_id)
    if lock:
        qs = qs.select_for_update()
    rooms = await qs

    busy = await busy_room_ids(
        [r.id for r in rooms], check_in, check_out, exclude_booking_id
    )
    free = [r for r in rooms if r.id not in busy]
    return sorted(free, key=lambda r: room_number_key(r.number))


async def available_count(
    room_type_id: UUID,
    check_in: date,
    check_out: date,
    *,
    exclude_booking_id: UUID | None = None,
    exclude_room_id: UUID | None = None,
) -> int:
    rooms = await find_free_rooms(
        room_type_id,
        check_in,
        check_out,
        exclude_booking_id=exclude_booking_id,
        exclude_room_id=exclude_room_id,
    )
    return len(rooms)


async def room_is_free(
    room_id: UUID,
    check_in: date,
    check_out: date,
    exclude_booking_id: UUID | None = None,
) -> bool:
    """True if no *other* active booking holds ``room_id`` over the window."""
    return not await busy_room_ids([room_id], check_in, check_out, exclude_booking_id)


async def allocate_room(
    room_type_id: UUID,
    check_in: date,
    check_out: date,
    *,
    exclude_booking_id: UUID | None = None,
    prefer_room_id: UUID | None = None,
) -> Room:
    """
    Re-check availability under row locks and reserve one room.

    Picks ``prefer_room_id`` when it is still free, otherwise the lowest room
    number. Raises RoomTakenError when nothing is left.
    """
    free = await find_free_rooms(
        room_type_id,
        check_in,
        check_out,
        exclude_booking_id=exclude_booking_id,
        lock=True,
    )
    if not free:
        logger.warning(
            "Allocation lost the race: room_type_id={} window={}..{}",
            room_type_id,
            check_in,
            check_out,
        )
        raise RoomTakenError(
            "The last available room of this type was just taken. "
            "Please choose another room type or dates.",
            room_type_id=str(room_type_id),
        )

    room = next((r for r in free if r.id == prefer_room_id), free[0])
    room.status = RoomStatus.OCCUPIED
    await room.save(update_fields=["status", "updated_at"])
    logger.debug("Reserved room {} for {}..{}", room.number, check_in, check_out)
    return room


async def release_room(room_id: UUID) -> Room | None:
    """Return an occupied room to the available pool. Maintenance is left alone."""
    room = await Room.filter(id=room_id).select_for_update().first()
    if room is None:
        return None
    if room.status == RoomStatus.OCCUPIED:
        room.status = RoomStatus.AVAILABLE
        await room.save(update_fields=["status", "updated_at"])
        logger.debug("Released room {}", room.number)
    return room
