from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models import (
    AccountType,
    BookingStatus,
    DiscountType,
    PaymentMethod,
    PaymentStatus,
    ReferenceType,
    RoomStatus,
    TransactionCategory,
    TransactionType,
)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Taxes & pricing
# ---------------------------------------------------------------------------


class TaxRule(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    percentage: Decimal = Field(ge=0)


class TaxRuleSet(BaseModel):
    """Rules in effect for a computation, and whether they are the fallback."""

    rules: list[TaxRule] = Field(default_factory=list)
    fallback: bool = False


class TaxLine(BaseModel):
    name: str
    percentage: Decimal
    amount: Decimal


class TaxBreakdown(BaseModel):
    base_amount: Decimal
    taxes: list[TaxLine]
    total_tax_amount: Decimal
    total_amount: Decimal
    fallback: bool = False


class TaxCalculationRequest(BaseModel):
    original_amount: Decimal = Field(ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)


class PromoTerms(BaseModel):
    discount_type: DiscountType
    discount_value: Decimal = Field(ge=0)
    max_discount_amount: Decimal | None = None


class PricingInput(BaseModel):
    room_rate: Decimal = Field(ge=0)
    nights: int = Field(gt=0)
    room_count: int = Field(ge=1)
    promo: PromoTerms | None = None
    tax: TaxRuleSet = Field(default_factory=TaxRuleSet)


class PricingSnapshot(BaseModel):
    room_rate: Decimal
    nights: int
    room_count: int
    original_amount: Decimal
    discount_amount: Decimal
    base_amount: Decimal
    taxes: list[TaxLine]
    total_tax_amount: Decimal
    total_amount: Decimal
    tax_fallback: bool = False


class PriceDelta(BaseModel):
    """Upgrade/downgrade preview: new total minus the booking's current total."""

    current_total: Decimal
    new_total: Decimal
    delta: Decimal
    room_type_id: UUID
    check_in: date
    check_out: date
    pricing: PricingSnapshot


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


class BookingQuoteRequest(BaseModel):
    room_type_id: UUID
    check_in: date
    check_out: date
    adults: int = Field(default=1, ge=1)
    children: int = Field(default=0, ge=0)
    room_count: int = Field(default=1, ge=1)
    promo_code: str | None = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def validate_stay_window(self) -> BookingQuoteRequest:
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        return self


class BookingCreate(BookingQuoteRequest):
    guest_name: str = Field(min_length=1, max_length=150)
    guest_email: str = Field(pattern=EMAIL_PATTERN, max_length=254)
    guest_phone: str = Field(min_length=3, max_length=50)
    special_requests: str | None = Field(default=None, max_length=1000)
    # Client-supplied idempotency key; a retried submission returns the same booking
    intent_key: str | None = Field(default=None, min_length=1, max_length=100)

    @field_validator("guest_name", "guest_phone", mode="after")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class BookingQuote(BaseModel):
    room_type_id: UUID
    available_rooms: int
    promo_code: str | None = None
    pricing: PricingSnapshot


class BookingUpdate(BaseModel):
    guest_name: str | None = Field(default=None, min_length=1, max_length=150)
    guest_email: str | None = Field(default=None, pattern=EMAIL_PATTERN, max_length=254)
    guest_phone: str | None = Field(default=None, min_length=3, max_length=50)
    adults: int | None = Field(default=None, ge=1)
    children: int | None = Field(default=None, ge=0)
    special_requests: str | None = Field(default=None, max_length=1000)
    room_type_id: UUID | None = None
    check_in: date | None = None
    check_out: date | None = None

    @property
    def changes_stay(self) -> bool:
        return (
            self.room_type_id is not None
            or self.check_in is not None
            or self.check_out is not None
        )


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus
    reason: str | None = Field(default=None, max_length=500)


class BookingResponse(BaseModel):
    id: UUID
    intent_key: str | None
    user_id: UUID | None
    guest_name: str
    guest_email: str
    guest_phone: str
    check_in: date
    check_out: date
    nights: int
    adults: int
    children: int
    room_count: int
    room_type_id: UUID
    room_id: UUID
    promo_code_id: UUID | None
    original_amount: Decimal
    discount_amount: Decimal
    base_amount: Decimal
    taxes: list[TaxLine]
    total_tax_amount: Decimal
    total_amount: Decimal
    tax_fallback: bool
    status: BookingStatus
    payment_status: PaymentStatus
    special_requests: str | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    status: BookingStatus | None = None
    payment_status: PaymentStatus | None = None
    room_type_id: UUID | None = None
    check_in_from: date | None = None
    check_in_to: date | None = None

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


class RoomTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    price: Decimal = Field(ge=0)
    max_guests: int = Field(ge=1)
    discount_percent: Decimal | None = Field(default=None, ge=0, le=100)


class RoomTypeResponse(BaseModel):
    id: UUID
    name: str
    description: str | None
    price: Decimal
    max_guests: int
    discount_percent: Decimal | None
    total_rooms: int

    model_config = ConfigDict(from_attributes=True)


class RoomTypeAvailability(RoomTypeResponse):
    available_rooms: int


class RoomCreate(BaseModel):
    number: str = Field(min_length=1, max_length=20)
    floor: int = 0
    room_type_id: UUID


class RoomResponse(BaseModel):
    id: UUID
    number: str
    floor: int
    room_type_id: UUID
    status: RoomStatus

    model_config = ConfigDict(from_attributes=True)


class RoomStatusUpdate(BaseModel):
    status: RoomStatus


# ---------------------------------------------------------------------------
# Promo codes
# ---------------------------------------------------------------------------


class PromoCodeCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    title: str = Field(default="", max_length=200)
    description: str | None = None
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    valid_from: datetime
    valid_until: datetime
    usage_cap: int | None = Field(default=None, ge=1)
    min_order_amount: Decimal | None = Field(default=None, ge=0)
    max_discount_amount: Decimal | None = Field(default=None, gt=0)
    applicable_room_types: list[str] | None = None
    is_active: bool = True

    @model_validator(mode="after")
    def validate_window(self) -> PromoCodeCreate:
        if self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("percentage discount cannot exceed 100")
        return self


class PromoCodeResponse(BaseModel):
    id: UUID
    code: str
    title: str
    description: str | None
    discount_type: DiscountType
    discount_value: Decimal
    valid_from: datetime
    valid_until: datetime
    usage_cap: int | None
    used_count: int
    min_order_amount: Decimal | None
    max_discount_amount: Decimal | None
    applicable_room_types: list[str] | None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class PromoValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    room_type_id: UUID
    amount: Decimal = Field(gt=0)


class PromoValidation(BaseModel):
    promo_code: PromoCodeResponse
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class TransactionResponse(BaseModel):
    id: UUID
    account_id: UUID
    type: TransactionType
    category: TransactionCategory
    amount: Decimal
    reference_type: ReferenceType | None
    reference_id: str | None
    payment_id: UUID | None
    compensates_id: UUID | None
    description: str
    processed_by: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentCreate(BaseModel):
    booking_id: UUID
    amount: Decimal = Field(gt=0)
    method: PaymentMethod
    reference: str | None = Field(default=None, max_length=100)
    received_by: str | None = Field(default=None, max_length=150)
    notes: str | None = Field(default=None, max_length=1000)
    account_id: UUID | None = None


class PaymentUpdate(BaseModel):
    amount: Decimal = Field(gt=0)
    method: PaymentMethod | None = None
    notes: str | None = Field(default=None, max_length=1000)
    reason: str | None = Field(default=None, max_length=500)


class PaymentReverse(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class PaymentResponse(BaseModel):
    id: UUID
    booking_id: UUID
    account_id: UUID
    amount: Decimal
    method: PaymentMethod
    reference: str | None
    received_by: str
    notes: str | None
    is_modification: bool
    original_amount: Decimal | None
    modification_reason: str | None
    reversed: bool
    reversed_at: datetime | None
    reversal_reason: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentResult(BaseModel):
    """Returned by every payment mutation: the new state plus its ledger effect."""

    payment: PaymentResponse
    payment_status: PaymentStatus
    total_paid: Decimal
    balance_due: Decimal
    ledger: list[TransactionResponse]


class PaymentSummary(BaseModel):
    booking_id: UUID
    total_amount: Decimal
    total_paid: Decimal
    balance_due: Decimal
    payment_status: PaymentStatus
    payments: list[PaymentResponse]


class AccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=150)
    account_type: AccountType = AccountType.CURRENT
    owner_id: UUID | None = None
    opening_balance: Decimal = Field(default=Decimal("0"), ge=0)


class UserAccountCreate(BaseModel):
    owner_id: UUID
    owner_name: str = Field(min_length=1, max_length=140)


class AccountResponse(BaseModel):
    id: UUID
    name: str
    account_type: AccountType
    is_main: bool
    owner_id: UUID | None
    balance: Decimal
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ManualTransactionKind(StrEnum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class ManualTransactionCreate(BaseModel):
    account_id: UUID
    type: ManualTransactionKind
    amount: Decimal = Field(gt=0)
    description: str = Field(min_length=1, max_length=255)


class TransferCreate(BaseModel):
    from_account_id: UUID
    to_account_id: UUID
    amount: Decimal = Field(gt=0)
    description: str = Field(min_length=1, max_length=255)

    @model_validator(mode="after")
    def validate_distinct_accounts(self) -> TransferCreate:
        if self.from_account_id == self.to_account_id:
            raise ValueError("Cannot transfer to the same account")
        return self


class LedgerPosting(BaseModel):
    account: AccountResponse
    transaction: TransactionResponse


class TransferResult(BaseModel):
    source: LedgerPosting
    destination: LedgerPosting


class TransactionFilters(BaseModel):
    account_id: UUID | None = None
    reference_id: str | None = None
    payment_id: UUID | None = None

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=200)


class AccountSummary(BaseModel):
    account_id: UUID
    total_credits: Decimal
    total_debits: Decimal
    net_amount: Decimal
    transaction_count: int
    credit_count: int
    debit_count: int


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


class InvoiceCreate(BaseModel):
    due_date: date | None = None  # defaults to check-in
    notes: str | None = Field(default=None, max_length=2000)
    terms: str | None = Field(default=None, max_length=2000)


class InvoiceResponse(BaseModel):
    id: UUID
    invoice_number: str
    booking_id: UUID
    guest_name: str
    guest_email: str
    guest_phone: str
    check_in: date
    check_out: date
    nights: int
    adults: int
    children: int
    room_type_name: str
    room_number: str
    original_amount: Decimal
    discount_amount: Decimal
    base_amount: Decimal
    taxes: list[TaxLine]
    total_tax_amount: Decimal
    total_amount: Decimal
    due_date: date
    notes: str | None
    terms: str
    issued_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Revenue reports
# ---------------------------------------------------------------------------


class ReportPeriod(StrEnum):
    DAILY = "daily"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class RevenueBreakdown(BaseModel):
    gross_collected: Decimal
    reversals: Decimal
    net_revenue: Decimal


class PaymentMethodBreakdown(BaseModel):
    by_method: dict[PaymentMethod, Decimal]
    total: Decimal


class BookingStats(BaseModel):
    booking_count: int
    total_nights: int
    average_nights: Decimal
    booked_value: Decimal
    average_booking_value: Decimal


class OutstandingPayments(BaseModel):
    """Balances still due across all live bookings; overdue ones are counted once, as overdue."""

    pending: Decimal
    partially_paid: Decimal
    overdue: Decimal
    total: Decimal


class TaxCollected(BaseModel):
    by_tax: dict[str, Decimal]
    total: Decimal


class RevenueTrend(BaseModel):
    previous_start: date
    previous_end: date
    previous_net_revenue: Decimal
    change_percent: Decimal | None  # None when the previous window earned nothing


class RevenueReport(BaseModel):
    period: ReportPeriod
    start: date
    end: date
    revenue: RevenueBreakdown
    payment_methods: PaymentMethodBreakdown
    bookings: BookingStats
    outstanding: OutstandingPayments
    tax_collected: TaxCollected
    trend: RevenueTrend
