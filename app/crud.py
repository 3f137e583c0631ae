from __future__ import annotations

from datetime import date, datetime, timezone
from uuid import UUID

from loguru import logger
from tortoise.exceptions import IntegrityError, OperationalError
from tortoise.transactions import in_transaction

from app import allocator
from app.errors import (
    BookingValidationError,
    InvalidTransitionError,
    PromoExhaustedError,
    SoldOutError,
    TemporaryFailureError,
)
from app.ledger import derive_payment_status, paid_total, reverse_booking_payments
from app.models import (
    Booking,
    BookingStatus,
    PaymentStatus,
    PromoCode,
    RoomType,
)
from app.pricing import compute_pricing, original_amount, promo_terms
from app.promos import promo_crud, usage_exhausted
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
    PricingInput,
    PricingSnapshot,
    TaxRuleSet,
)

VALID_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CHECKED_IN, BookingStatus.CANCELLED},
    BookingStatus.CHECKED_IN: {BookingStatus.CHECKED_OUT, BookingStatus.CANCELLED},
    BookingStatus.CHECKED_OUT: set(),
    BookingStatus.CANCELLED: set(),
}

# Transitions that hand the room back to the pool
_RELEASING_STATUSES = {BookingStatus.CANCELLED, BookingStatus.CHECKED_OUT}

# Payment statuses derived from recorded payments; they cannot be set by hand
_DERIVED_PAYMENT_STATUSES = {PaymentStatus.PAID, PaymentStatus.PARTIALLY_PAID}
_COLLECTED_PAYMENT_STATUSES = {PaymentStatus.PAID, PaymentStatus.PARTIALLY_PAID}
_REVERSING_PAYMENT_STATUSES = {PaymentStatus.PENDING, PaymentStatus.REFUNDED}
# Statuses re-derived from the ledger when a stay change moves the total
_REPRICED_PAYMENT_STATUSES = {
    PaymentStatus.PENDING,
    PaymentStatus.PARTIALLY_PAID,
    PaymentStatus.PAID,
}


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def validate_stay(check_in: date, check_out: date, today: date) -> int:
    """Return the number of nights, or raise for an impossible window."""
    if check_in < today:
        raise BookingValidationError("check_in cannot be in the past")
    nights = (check_out - check_in).days
    if nights <= 0:
        raise BookingValidationError("check_out must be after check_in")
    return nights


def validate_occupancy(
    room_type: RoomType, adults: int, children: int, room_count: int
) -> None:
    if adults < 1:
        raise BookingValidationError("At least one adult is required")
    if children < 0:
        raise BookingValidationError("children cannot be negative")
    if room_count < 1:
        raise BookingValidationError("room_count must be at least 1")
    capacity = room_type.max_guests * room_count
    if adults + children > capacity:
        raise BookingValidationError(
            f"{adults + children} guests exceed the capacity of {capacity} "
            f"for {room_count} x {room_type.name}",
            max_guests=room_type.max_guests,
        )


def _apply_snapshot(inst: Booking, pricing: PricingSnapshot) -> None:
    inst.original_amount = pricing.original_amount
    inst.discount_amount = pricing.discount_amount
    inst.base_amount = pricing.base_amount
    inst.taxes = [line.model_dump(mode="json") for line in pricing.taxes]
    inst.total_tax_amount = pricing.total_tax_amount
    inst.total_amount = pricing.total_amount
    inst.tax_fallback = pricing.tax_fallback


def _to_response(inst: Booking) -> BookingResponse:
    return BookingResponse.model_validate(inst, from_attributes=True)


class BookingCRUD:
    # -- pricing -------------------------------------------------------------

    async def _price(
        self,
        room_type: RoomType,
        nights: int,
        room_count: int,
        promo: PromoCode | None,
        tax_rules: TaxRuleSet,
    ) -> PricingSnapshot:
        return compute_pricing(
            PricingInput(
                room_rate=room_type.price,
                nights=nights,
                room_count=room_count,
                promo=promo_terms(promo),
                tax=tax_rules,
            )
        )

    async def _prepare(
        self,
        payload: BookingQuoteRequest,
        tax_rules: TaxRuleSet,
        today: date | None,
        now: datetime | None,
    ) -> tuple[RoomType, PromoCode | None, PricingSnapshot] | None:
        """Validate a stay request and price it. None when the room type is unknown."""
        room_type = await RoomType.get_or_none(id=payload.room_type_id)
        if room_type is None:
            return None

        nights = validate_stay(payload.check_in, payload.check_out, today or _utc_today())
        validate_occupancy(room_type, payload.adults, payload.children, payload.room_count)

        promo = None
        if payload.promo_code:
            promo = await promo_crud.resolve(
                payload.promo_code,
                room_type.id,
                original_amount(room_type.price, nights, payload.room_count),
                now,
            )

        pricing = await self._price(
            room_type, nights, payload.room_count, promo, tax_rules
        )
        return room_type, promo, pricing

    async def quote_booking(
        self,
        payload: BookingQuoteRequest,
        tax_rules: TaxRuleSet,
        today: date | None = None,
        now: datetime | None = None,
    ) -> BookingQuote | None:
        prepared = await self._prepare(payload, tax_rules, today, now)
        if prepared is None:
            return None
        room_type, promo, pricing = prepared
        available = await allocator.available_count(
            room_type.id, payload.check_in, payload.check_out
        )
        return BookingQuote(
            room_type_id=room_type.id,
            available_rooms=available,
            promo_code=promo.code if promo else None,
            pricing=pricing,
        )

    # -- create --------------------------------------------------------------

    async def _replay(self, intent_key: str | None) -> BookingResponse | None:
        if not intent_key:
            return None
        existing = await Booking.get_or_none(intent_key=intent_key)
        if existing is None:
            return None
        logger.info("Idempotent replay of intent {} -> booking {}", intent_key, existing.id)
        return _to_response(existing)

    async def create_booking(
        self,
        payload: BookingCreate,
        tax_rules: TaxRuleSet,
        user_id: UUID | None = None,
        today: date | None = None,
        now: datetime | None = None,
    ) -> BookingResponse | None:
        """
        Validate, price, allocate and persist a booking in that order.

        The availability re-check, the room reservation and the insert share a
        single transaction; if allocation fails nothing is written. A repeated
        ``intent_key`` returns the booking created by the first attempt.
        Returns None when the room type does not exist.
        """
        replay = await self._replay(payload.intent_key)
        if replay is not None:
            return replay

        prepared = await self._prepare(payload, tax_rules, today, now)
        if prepared is None:
            return None
        room_type, promo, pricing = prepared

        if not await allocator.available_count(
            room_type.id, payload.check_in, payload.check_out
        ):
            raise SoldOutError(
                f"No {room_type.name} rooms are available for these dates",
                room_type_id=str(room_type.id),
            )

        try:
            async with in_transaction():
                replay = await self._replay(payload.intent_key)
                if replay is not None:
                    return replay

                if promo is not None:
                    locked = (
                        await PromoCode.filter(id=promo.id).select_for_update().first()
                    )
                    if (
                        locked is None
                        or usage_exhausted(locked)
                        or (
                            locked.usage_cap is not None
                            and not await promo_crud.claim_usage(locked)
                        )
                    ):
                        raise PromoExhaustedError(
                            "Promo code usage limit was reached while booking",
                            reason="usage_cap_reached",
                        )

                room = await allocator.allocate_room(
                    room_type.id, payload.check_in, payload.check_out
                )
                inst = Booking(
                    intent_key=payload.intent_key,
                    user_id=user_id,
                    guest_name=payload.guest_name,
                    guest_email=payload.guest_email,
                    guest_phone=payload.guest_phone,
                    check_in=payload.check_in,
                    check_out=payload.check_out,
                    nights=pricing.nights,
                    adults=payload.adults,
                    children=payload.children,
                    room_count=payload.room_count,
                    room_type_id=room_type.id,
                    room_id=room.id,
                    promo_code_id=promo.id if promo else None,
                    status=BookingStatus.CONFIRMED,
                    payment_status=PaymentStatus.PENDING,
                    special_requests=payload.special_requests,
                )
                _apply_snapshot(inst, pricing)
                await inst.save()
        except IntegrityError:
            # A concurrent retry with the same intent key committed first
            replay = await self._replay(payload.intent_key)
            if replay is not None:
                return replay
            raise
        except OperationalError as exc:
            logger.opt(exception=True).warning("Booking submission hit a database error")
            raise TemporaryFailureError(
                "Temporary error while saving the booking, please retry"
            ) from exc

        # Capped codes were claimed inside the transaction above
        if promo is not None and promo.usage_cap is None:
            await promo_crud.increment_usage(promo.id)

        logger.info(
            "Booking {} confirmed: room {} ({}) {}..{} total={}",
            inst.id,
            room.number,
            room_type.name,
            inst.check_in,
            inst.check_out,
            inst.total_amount,
        )
        return _to_response(inst)

    # -- read ----------------------------------------------------------------

    async def get_booking(
        self,
        booking_id: UUID,
        user_id: UUID | None = None,
    ) -> BookingResponse | None:
        if user_id is not None:
            inst = await Booking.get_or_none(id=booking_id, user_id=user_id)
        else:
            inst = await Booking.get_or_none(id=booking_id)
        if not inst:
            return None
        return _to_response(inst)

    async def list_bookings(
        self,
        filters: BookingFilters,
        user_id: UUID | None = None,
    ) -> list[BookingResponse]:
        qs = Booking.all()

        if user_id is not None:
            qs = qs.filter(user_id=user_id)
        if filters.status is not None:
            qs = qs.filter(status=filters.status)
        if filters.payment_status is not None:
            qs = qs.filter(payment_status=filters.payment_status)
        if filters.room_type_id is not None:
            qs = qs.filter(room_type_id=filters.room_type_id)
        if filters.check_in_from is not None:
            qs = qs.filter(check_in__gte=filters.check_in_from)
        if filters.check_in_to is not None:
            qs = qs.filter(check_in__lte=filters.check_in_to)

        offset = (filters.page - 1) * filters.page_size
        qs = qs.offset(offset).limit(filters.page_size)
        return [_to_response(b) for b in await qs]

    # -- edit ----------------------------------------------------------------

    async def _target_stay(
        self, inst: Booking, payload: BookingUpdate, today: date
    ) -> tuple[RoomType, date, date, int] | None:
        room_type_id = payload.room_type_id or inst.room_type_id
        room_type = await RoomType.get_or_none(id=room_type_id)
        if room_type is None:
            return None

        check_in = payload.check_in or inst.check_in
        check_out = payload.check_out or inst.check_out
        if check_in != inst.check_in:
            nights = validate_stay(check_in, check_out, today)
        else:
            # An unchanged (possibly past) check-in is not re-validated
            nights = (check_out - check_in).days
            if nights <= 0:
                raise BookingValidationError("check_out must be after check_in")
        return room_type, check_in, check_out, nights

    async def _ensure_reassignable(
        self, inst: Booking, room_type: RoomType, check_in: date, check_out: date
    ) -> None:
        """Step 1 of a reassignment: the target must have a room for this booking."""
        if room_type.id != inst.room_type_id:
            free = await allocator.available_count(
                room_type.id,
                check_in,
                check_out,
                exclude_booking_id=inst.id,
                exclude_room_id=inst.room_id,
            )
        else:
            keep_current = await allocator.room_is_free(
                inst.room_id, check_in, check_out, exclude_booking_id=inst.id
            )
            free = int(keep_current) or await allocator.available_count(
                room_type.id,
                check_in,
                check_out,
                exclude_booking_id=inst.id,
                exclude_room_id=inst.room_id,
            )
        if not free:
            raise SoldOutError(
                f"No {room_type.name} rooms are available for these dates",
                room_type_id=str(room_type.id),
            )

    async def _booking_promo(self, inst: Booking) -> PromoCode | None:
        if inst.promo_code_id is None:
            return None
        return await PromoCode.get_or_none(id=inst.promo_code_id)

    async def preview_update(
        self,
        booking_id: UUID,
        payload: BookingUpdate,
        tax_rules: TaxRuleSet,
        today: date | None = None,
    ) -> PriceDelta | None:
        """Price an edit without committing it: new total minus current total."""
        inst = await Booking.get_or_none(id=booking_id)
        if inst is None:
            return None
        target = await self._target_stay(inst, payload, today or _utc_today())
        if target is None:
            return None
        room_type, check_in, check_out, nights = target

        await self._ensure_reassignable(inst, room_type, check_in, check_out)
        pricing = await self._price(
            room_type, nights, inst.room_count, await self._booking_promo(inst), tax_rules
        )
        return PriceDelta(
            current_total=inst.total_amount,
            new_total=pricing.total_amount,
            delta=pricing.total_amount - inst.total_amount,
            room_type_id=room_type.id,
            check_in=check_in,
            check_out=check_out,
            pricing=pricing,
        )

    async def update_booking(
        self,
        booking_id: UUID,
        payload: BookingUpdate,
        tax_rules: TaxRuleSet,
        today: date | None = None,
    ) -> BookingResponse | None:
        today = today or _utc_today()
        async with in_transaction():
            inst = await Booking.filter(id=booking_id).select_for_update().first()
            if inst is None:
                return None
            if inst.status in _RELEASING_STATUSES:
                raise InvalidTransitionError(
                    f"A {inst.status} booking can no longer be edited"
                )

            for field in ("guest_name", "guest_email", "guest_phone", "special_requests"):
                value = getattr(payload, field)
                if value is not None:
                    setattr(inst, field, value)

            target = await self._target_stay(inst, payload, today)
            if target is None:
                return None
            room_type, check_in, check_out, nights = target

            adults = payload.adults if payload.adults is not None else inst.adults
            children = payload.children if payload.children is not None else inst.children
            validate_occupancy(room_type, adults, children, inst.room_count)
            inst.adults, inst.children = adults, children

            stay_changed = payload.changes_stay and (
                room_type.id != inst.room_type_id
                or check_in != inst.check_in
                or check_out != inst.check_out
            )
            if stay_changed:
                await self._reassign(inst, room_type, check_in, check_out, nights, tax_rules)
                if inst.payment_status in _REPRICED_PAYMENT_STATUSES:
                    inst.payment_status = derive_payment_status(
                        await paid_total(inst.id), inst.total_amount
                    )

            await inst.save()
        return _to_response(inst)

    async def _reassign(
        self,
        inst: Booking,
        room_type: RoomType,
        check_in: date,
        check_out: date,
        nights: int,
        tax_rules: TaxRuleSet,
    ) -> None:
        """Validate, release, reserve, then reprice: strictly in that order."""
        previous_room_id = inst.room_id
        previous_total = inst.total_amount
        type_changed = room_type.id != inst.room_type_id

        await self._ensure_reassignable(inst, room_type, check_in, check_out)
        await allocator.release_room(previous_room_id)
        room = await allocator.allocate_room(
            room_type.id,
            check_in,
            check_out,
            exclude_booking_id=inst.id,
            prefer_room_id=None if type_changed else previous_room_id,
        )

        pricing = await self._price(
            room_type, nights, inst.room_count, await self._booking_promo(inst), tax_rules
        )
        inst.room_type_id = room_type.id
        inst.room_id = room.id
        inst.check_in = check_in
        inst.check_out = check_out
        inst.nights = nights
        _apply_snapshot(inst, pricing)

        logger.info(
            "Booking {} reassigned to room {} ({}..{}), total {} -> {}",
            inst.id,
            room.number,
            check_in,
            check_out,
            previous_total,
            pricing.total_amount,
        )

    # -- lifecycle -----------------------------------------------------------

    async def update_booking_status(
        self,
        booking_id: UUID,
        payload: BookingStatusUpdate,
    ) -> BookingResponse | None:
        async with in_transaction():
            inst = await Booking.filter(id=booking_id).select_for_update().first()
            if not inst:
                return None

            allowed = VALID_TRANSITIONS.get(inst.status, set())
            if payload.status not in allowed:
                raise InvalidTransitionError(
                    f"Cannot transition from '{inst.status}' to '{payload.status}'",
                    allowed=sorted(s.value for s in allowed),
                )

            if payload.status in _RELEASING_STATUSES:
                await allocator.release_room(inst.room_id)
            if payload.status == BookingStatus.CANCELLED and not await paid_total(inst.id):
                inst.payment_status = PaymentStatus.CANCELLED

            inst.status = payload.status
            await inst.save(update_fields=["status", "payment_status", "updated_at"])

        logger.info("Booking {} -> {}", inst.id, inst.status)
        return _to_response(inst)

    async def cancel_booking(self, booking_id: UUID) -> BookingResponse | None:
        return await self.update_booking_status(
            booking_id, BookingStatusUpdate(status=BookingStatus.CANCELLED)
        )

    async def update_payment_status(
        self,
        booking_id: UUID,
        payload: PaymentStatusUpdate,
        processed_by: str,
    ) -> BookingResponse | None:
        """
        Override the payment status. Moving a collected booking back to pending
        or refunded reverses its payments in the ledger before the new status
        is written, in the same transaction.
        """
        new_status = payload.payment_status
        if new_status in _DERIVED_PAYMENT_STATUSES:
            raise InvalidTransitionError(
                f"'{new_status}' is derived from recorded payments; record a payment instead"
            )

        async with in_transaction():
            inst = await Booking.filter(id=booking_id).select_for_update().first()
            if not inst:
                return None

            old_status = inst.payment_status
            if (
                old_status in _COLLECTED_PAYMENT_STATUSES
                and new_status in _REVERSING_PAYMENT_STATUSES
            ):
                await reverse_booking_payments(
                    inst,
                    payload.reason or f"Payment status changed to {new_status}",
                    processed_by,
                )

            inst.payment_status = new_status
            await inst.save(update_fields=["payment_status", "updated_at"])

        logger.info("Booking {} payment status {} -> {}", inst.id, old_status, new_status)
        return _to_response(inst)


booking_crud = BookingCRUD()
