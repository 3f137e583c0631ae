"""
Booking price computation.

Everything here except ``resolve_tax_rules`` is a pure function of its inputs.
Callers recompute explicitly at every transition point (quote, submit,
room-type change, date change) instead of patching a previous snapshot.

Rounding rule: every money value that results from a multiplication or a
percentage (room total, discount, each tax line) is rounded to 0.01 with
ROUND_HALF_UP at the moment it is produced. Totals are sums of rounded values.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

import httpx
from loguru import logger

from app import settings
from app.cache import get_tax_rules_cache, set_tax_rules_cache
from app.models import DiscountType
from app.schemas import (
    PricingInput,
    PricingSnapshot,
    PromoTerms,
    TaxBreakdown,
    TaxLine,
    TaxRule,
    TaxRuleSet,
)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def default_tax_rules() -> TaxRuleSet:
    return TaxRuleSet(
        rules=[
            TaxRule(
                name=settings.DEFAULT_TAX_NAME,
                percentage=settings.DEFAULT_TAX_PERCENTAGE,
            )
        ],
        fallback=True,
    )


def calculate_taxes(
    original_amount: Decimal,
    discount_amount: Decimal,
    rules: list[TaxRule],
    *,
    fallback: bool = False,
) -> TaxBreakdown:
    """
    Apply each rule to the discounted base. Lines are additive, not compounding:
    every line is ``net_base * percentage / 100`` against the same net base.
    """
    net_base = max(ZERO, to_money(original_amount) - to_money(discount_amount))

    lines: list[TaxLine] = []
    for rule in rules:
        if rule.percentage <= 0:
            continue
        lines.append(
            TaxLine(
                name=rule.name,
                percentage=rule.percentage,
                amount=to_money(net_base * rule.percentage / HUNDRED),
            )
        )

    total_tax = sum((line.amount for line in lines), ZERO)
    return TaxBreakdown(
        base_amount=net_base,
        taxes=lines,
        total_tax_amount=total_tax,
        total_amount=net_base + total_tax,
        fallback=fallback,
    )


def compute_discount(
    discount_type: DiscountType,
    discount_value: Decimal,
    amount: Decimal,
    max_discount_amount: Decimal | None = None,
) -> Decimal:
    """Discount for ``amount``; never negative and never more than ``amount``."""
    amount = to_money(amount)
    if discount_type == DiscountType.PERCENTAGE:
        discount = to_money(amount * Decimal(discount_value) / HUNDRED)
    else:
        discount = to_money(discount_value)

    if max_discount_amount is not None and discount > max_discount_amount:
        discount = to_money(max_discount_amount)
    return max(ZERO, min(discount, amount))


def original_amount(room_rate: Decimal, nights: int, room_count: int) -> Decimal:
    return to_money(Decimal(room_rate) * nights * room_count)


def compute_pricing(data: PricingInput) -> PricingSnapshot:
    original = original_amount(data.room_rate, data.nights, data.room_count)

    discount = ZERO
    if data.promo is not None:
        discount = compute_discount(
            data.promo.discount_type,
            data.promo.discount_value,
            original,
            data.promo.max_discount_amount,
        )

    breakdown = calculate_taxes(
        original, discount, data.tax.rules, fallback=data.tax.fallback
    )
    return PricingSnapshot(
        room_rate=to_money(data.room_rate),
        nights=data.nights,
        room_count=data.room_count,
        original_amount=original,
        discount_amount=discount,
        base_amount=breakdown.base_amount,
        taxes=breakdown.taxes,
        total_tax_amount=breakdown.total_tax_amount,
        total_amount=breakdown.total_amount,
        tax_fallback=breakdown.fallback,
    )


def promo_terms(promo) -> PromoTerms | None:
    """Extract pricing terms from a PromoCode row (or None)."""
    if promo is None:
        return None
    return PromoTerms(
        discount_type=promo.discount_type,
        discount_value=promo.discount_value,
        max_discount_amount=promo.max_discount_amount,
    )


async def resolve_tax_rules(hotel_info_client) -> TaxRuleSet:
    """
    Rules to price with right now.

    Served from the short-TTL cache when possible. When the hotel-info service
    is unreachable or returns nothing, the configured default rule is used and
    flagged with ``fallback=True`` so it is never mistaken for "no tax".
    """
    if not settings.TAX_ENABLED:
        return TaxRuleSet(rules=[], fallback=False)

    cached = await get_tax_rules_cache()
    if cached is not None:
        logger.debug("Cache hit for tax rules")
        return TaxRuleSet(rules=[TaxRule(**r) for r in cached])

    logger.debug("Cache miss for tax rules")
    try:
        raw = await hotel_info_client.get_tax_rules()
        rules = [TaxRule(**r) for r in raw]
    except (httpx.HTTPError, ValueError, TypeError, KeyError):
        logger.opt(exception=True).warning(
            "Tax rule source unavailable: falling back to {} {}%",
            settings.DEFAULT_TAX_NAME,
            settings.DEFAULT_TAX_PERCENTAGE,
        )
        return default_tax_rules()

    if not rules:
        logger.info(
            "Tax rule source returned no rules: applying default {} {}%",
            settings.DEFAULT_TAX_NAME,
            settings.DEFAULT_TAX_PERCENTAGE,
        )
        return default_tax_rules()

    await set_tax_rules_cache([r.model_dump(mode="json") for r in rules])
    return TaxRuleSet(rules=rules)
