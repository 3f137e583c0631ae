"""
Revenue reports built from the ledger and the booking snapshots.

Collected money is read from ledger entries, never from booking totals, so a
reversed or edited payment shows up in the window where the correction was
posted. Booking counts and tax use each booking's frozen pricing snapshot.
"""

from __future__ import annotations

import calendar
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger

from app.errors import BookingValidationError
from app.models import (
    Booking,
    BookingStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Transaction,
    TransactionCategory,
    TransactionType,
)
from app.pricing import ZERO, to_money
from app.schemas import (
    BookingStats,
    OutstandingPayments,
    PaymentMethodBreakdown,
    ReportPeriod,
    RevenueBreakdown,
    RevenueReport,
    RevenueTrend,
    TaxCollected,
)

_COLLECTED_CATEGORIES = (
    TransactionCategory.ACCOMMODATION_REVENUE,
    TransactionCategory.PAYMENT_ADJUSTMENT,
)
_REVERSED_CATEGORIES = (
    TransactionCategory.PAYMENT_REVERSAL,
    TransactionCategory.REFUND,
)
_OUTSTANDING_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PARTIALLY_PAID)


def period_window(period: ReportPeriod, day: date) -> tuple[date, date]:
    """Inclusive first and last day of the period containing ``day``."""
    if period == ReportPeriod.DAILY:
        return day, day
    if period == ReportPeriod.MONTHLY:
        last = calendar.monthrange(day.year, day.month)[1]
        return day.replace(day=1), day.replace(day=last)
    if period == ReportPeriod.YEARLY:
        return date(day.year, 1, 1), date(day.year, 12, 31)
    raise BookingValidationError("A custom report needs explicit start and end dates")


def _bounds(start: date, end: date) -> tuple[datetime, datetime]:
    lo = datetime.combine(start, time.min, tzinfo=timezone.utc)
    hi = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return lo, hi


def _average(total: Decimal, count: int) -> Decimal:
    return to_money(total / count) if count else ZERO


class RevenueCRUD:
    async def _revenue(self, start: date, end: date) -> RevenueBreakdown:
        lo, hi = _bounds(start, end)
        rows = await Transaction.filter(
            created_at__gte=lo,
            created_at__lt=hi,
            category__in=_COLLECTED_CATEGORIES + _REVERSED_CATEGORIES,
        ).values_list("type", "category", "amount")

        gross = to_money(
            sum(
                (
                    Decimal(a)
                    for t, c, a in rows
                    if t == TransactionType.CREDIT and c in _COLLECTED_CATEGORIES
                ),
                ZERO,
            )
        )
        reversals = to_money(
            sum(
                (
                    Decimal(a)
                    for t, c, a in rows
                    if t == TransactionType.DEBIT and c in _REVERSED_CATEGORIES
                ),
                ZERO,
            )
        )
        return RevenueBreakdown(
            gross_collected=gross, reversals=reversals, net_revenue=gross - reversals
        )

    async def _payment_methods(self, start: date, end: date) -> PaymentMethodBreakdown:
        lo, hi = _bounds(start, end)
        rows = await Payment.filter(
            reversed=False, created_at__gte=lo, created_at__lt=hi
        ).values_list("method", "amount")

        by_method = {method: ZERO for method in PaymentMethod}
        for method, amount in rows:
            by_method[PaymentMethod(method)] += Decimal(amount)
        by_method = {m: to_money(v) for m, v in by_method.items()}
        return PaymentMethodBreakdown(
            by_method=by_method, total=to_money(sum(by_method.values(), ZERO))
        )

    def _stays(self, start: date, end: date):
        return Booking.filter(check_in__gte=start, check_in__lte=end).exclude(
            status=BookingStatus.CANCELLED
        )

    async def _booking_stats(self, start: date, end: date) -> BookingStats:
        rows = await self._stays(start, end).values_list("nights", "total_amount")
        count = len(rows)
        nights = sum(n for n, _ in rows)
        booked = to_money(sum((Decimal(t) for _, t in rows), ZERO))
        return BookingStats(
            booking_count=count,
            total_nights=nights,
            average_nights=_average(Decimal(nights), count),
            booked_value=booked,
            average_booking_value=_average(booked, count),
        )

    async def _tax_collected(self, start: date, end: date) -> TaxCollected:
        paid_stays = await self._stays(start, end).filter(payment_status=PaymentStatus.PAID)

        by_tax: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for booking in paid_stays:
            for line in booking.taxes or []:
                by_tax[line["name"]] += Decimal(str(line["amount"]))
        by_tax = {name: to_money(v) for name, v in by_tax.items()}
        return TaxCollected(by_tax=by_tax, total=to_money(sum(by_tax.values(), ZERO)))

    async def outstanding(self, today: date) -> OutstandingPayments:
        """
        Balance still due on every live booking. A booking whose stay has
        ended is reported as overdue instead of under its payment status.
        """
        bookings = await Booking.filter(
            payment_status__in=_OUTSTANDING_STATUSES
        ).exclude(status=BookingStatus.CANCELLED)
        paid: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        if bookings:
            rows = await Payment.filter(
                booking_id__in=[b.id for b in bookings], reversed=False
            ).values_list("booking_id", "amount")
            for booking_id, amount in rows:
                paid[booking_id] += Decimal(amount)

        buckets = {"pending": ZERO, "partially_paid": ZERO, "overdue": ZERO}
        for booking in bookings:
            due = max(ZERO, Decimal(booking.total_amount) - paid[booking.id])
            if booking.check_out < today:
                buckets["overdue"] += due
            elif booking.payment_status == PaymentStatus.PARTIALLY_PAID:
                buckets["partially_paid"] += due
            else:
                buckets["pending"] += due

        buckets = {k: to_money(v) for k, v in buckets.items()}
        return OutstandingPayments(**buckets, total=to_money(sum(buckets.values(), ZERO)))

    async def _trend(self, start: date, end: date, net: Decimal) -> RevenueTrend:
        length = (end - start).days + 1
        previous_end = start - timedelta(days=1)
        previous_start = previous_end - timedelta(days=length - 1)
        previous = (await self._revenue(previous_start, previous_end)).net_revenue
        change = None
        if previous:
            change = to_money((net - previous) / abs(previous) * 100)
        return RevenueTrend(
            previous_start=previous_start,
            previous_end=previous_end,
            previous_net_revenue=previous,
            change_percent=change,
        )

    async def revenue_report(
        self,
        start: date,
        end: date,
        period: ReportPeriod = ReportPeriod.CUSTOM,
        today: date | None = None,
    ) -> RevenueReport:
        if end < start:
            raise BookingValidationError("Report end must not be before its start")
        today = today or datetime.now(timezone.utc).date()

        revenue = await self._revenue(start, end)
        report = RevenueReport(
            period=period,
            start=start,
            end=end,
            revenue=revenue,
            payment_methods=await self._payment_methods(start, end),
            bookings=await self._booking_stats(start, end),
            outstanding=await self.outstanding(today),
            tax_collected=await self._tax_collected(start, end),
            trend=await self._trend(start, end, revenue.net_revenue),
        )
        logger.info(
            "Revenue report {}..{} ({}): net={} bookings={}",
            start,
            end,
            period,
            revenue.net_revenue,
            report.bookings.booking_count,
        )
        return report

    async def period_report(
        self, period: ReportPeriod, on: date, today: date | None = None
    ) -> RevenueReport:
        start, end = period_window(period, on)
        return await self.revenue_report(start, end, period=period, today=today)


revenue_crud = RevenueCRUD()
