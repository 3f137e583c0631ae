from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from tortoise.exceptions import BaseORMException
from tortoise.expressions import F
from tortoise.transactions import in_transaction

from app import settings
from app.errors import PromoExhaustedError, PromoRejectedError
from app.models import PromoCode
from app.pricing import compute_discount, to_money
from app.schemas import (
    PromoCodeCreate,
    PromoCodeResponse,
    PromoValidation,
)

ALL_ROOM_TYPES = "all"


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def usage_exhausted(promo: PromoCode) -> bool:
    return promo.usage_cap is not None and promo.used_count >= promo.usage_cap


def check_promo(
    promo: PromoCode,
    room_type_id: UUID,
    amount: Decimal,
    now: datetime,
) -> None:
    """
    Raise the specific rejection for ``promo`` against a stay, or return None.

    Checks run in a fixed order so the caller always sees the same reason for
    the same state: active, validity window, usage cap, room type, minimum.
    """
    if not promo.is_active:
        raise PromoRejectedError("inactive", "Promo code is not active")

    now = _to_utc(now)
    if now < _to_utc(promo.valid_from):
        raise PromoRejectedError("not_yet_valid", "Promo code is not yet valid")
    if now > _to_utc(promo.valid_until):
        raise PromoRejectedError("expired", "Promo code has expired")

    if usage_exhausted(promo):
        raise PromoExhaustedError(
            "Promo code usage limit reached", reason="usage_cap_reached"
        )

    applicable = promo.applicable_room_types
    if applicable and ALL_ROOM_TYPES not in applicable:
        if str(room_type_id) not in {str(rt) for rt in applicable}:
            raise PromoRejectedError(
                "not_applicable", "Promo code not applicable for this room type"
            )

    if promo.min_order_amount is not None and amount < promo.min_order_amount:
        raise PromoRejectedError(
            "min_amount_not_met",
            f"Minimum order amount of {to_money(promo.min_order_amount)} required",
        )


class PromoCRUD:
    async def get_by_code(self, code: str) -> PromoCode | None:
        # Exact match; codes are case-sensitive
        return await PromoCode.get_or_none(code=code)

    async def resolve(
        self,
        code: str,
        room_type_id: UUID,
        amount: Decimal,
        now: datetime | None = None,
    ) -> PromoCode:
        """Return the promo row if it applies, else raise the rejection reason."""
        promo = await self.get_by_code(code)
        if promo is None:
            raise PromoRejectedError("not_found", "Invalid promo code")
        check_promo(
            promo, room_type_id, to_money(amount), now or datetime.now(timezone.utc)
        )
        return promo

    async def validate(
        self,
        code: str,
        room_type_id: UUID,
        amount: Decimal,
        now: datetime | None = None,
    ) -> PromoValidation:
        """Validate without side effects: ``used_count`` is never touched here."""
        amount = to_money(amount)
        promo = await self.resolve(code, room_type_id, amount, now)

        discount = compute_discount(
            promo.discount_type,
            promo.discount_value,
            amount,
            promo.max_discount_amount,
        )
        return PromoValidation(
            promo_code=PromoCodeResponse.model_validate(promo, from_attributes=True),
            original_amount=amount,
            discount_amount=discount,
            final_amount=amount - discount,
        )

    async def claim_usage(self, promo: PromoCode) -> bool:
        """
        Take one use of a capped code inside the caller's transaction.

        The conditional update is the cap check: it matches no row once
        ``used_count`` has reached ``usage_cap``. Returns False in that case.
        """
        claimed = await PromoCode.filter(
            id=promo.id, used_count__lt=promo.usage_cap
        ).update(used_count=F("used_count") + 1)
        return claimed > 0

    async def increment_usage(self, promo_id: UUID) -> bool:
        """
        Count one confirmed use of an uncapped code. Retried, then logged; a failure
        here never fails the booking that triggered it. Returns True on success.
        """
        for attempt in range(1, settings.PROMO_INCREMENT_ATTEMPTS + 1):
            try:
                async with in_transaction():
                    promo = (
                        await PromoCode.filter(id=promo_id)
                        .select_for_update()
                        .first()
                    )
                    if promo is None:
                        logger.warning("Promo {} vanished before usage increment", promo_id)
                        return False
                    if usage_exhausted(promo):
                        logger.warning(
                            "Promo {} already at cap {}, usage not incremented",
                            promo.code,
                            promo.usage_cap,
                        )
                        return False
                    promo.used_count += 1
                    await promo.save(update_fields=["used_count"])
                return True
            except BaseORMException:
                logger.opt(exception=True).warning(
                    "Promo usage increment failed (attempt {}/{}): promo_id={}",
                    attempt,
                    settings.PROMO_INCREMENT_ATTEMPTS,
                    promo_id,
                )

        logger.error("Giving up on promo usage increment: promo_id={}", promo_id)
        return False

    async def create_promo(self, payload: PromoCodeCreate) -> PromoCodeResponse:
        inst = await PromoCode.create(**payload.model_dump())
        return PromoCodeResponse.model_validate(inst, from_attributes=True)

    async def list_promos(self, active_only: bool = False) -> list[PromoCodeResponse]:
        qs = PromoCode.all()
        if active_only:
            qs = qs.filter(is_active=True)
        return [
            PromoCodeResponse.model_validate(p, from_attributes=True) for p in await qs
        ]


promo_crud = PromoCRUD()
