from enum import StrEnum

from tortoise import fields
from tortoise.models import Model


class RoomStatus(StrEnum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"  # held by an active booking
    MAINTENANCE = "maintenance"  # ops-controlled, outside the booking flow


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class DiscountType(StrEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PaymentMethod(StrEnum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    ONLINE_GATEWAY = "online_gateway"
    CHEQUE = "cheque"
    WALLET = "wallet"
    OTHER = "other"


class AccountType(StrEnum):
    MAIN = "main"
    PETTY_CASH = "petty_cash"
    ONLINE_PAYMENTS = "online_payments"
    SAVINGS = "savings"
    CURRENT = "current"
    USER = "user"  # per-staff sub-account


class TransactionType(StrEnum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionCategory(StrEnum):
    ACCOMMODATION_REVENUE = "accommodation_revenue"
    PAYMENT_REVERSAL = "payment_reversal"
    PAYMENT_ADJUSTMENT = "payment_adjustment"
    REFUND = "refund"
    MANUAL_DEPOSIT = "manual_deposit"
    MANUAL_WITHDRAWAL = "manual_withdrawal"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    OPENING_BALANCE = "opening_balance"
    OTHER = "other"


class ReferenceType(StrEnum):
    BOOKING = "booking"
    PAYMENT = "payment"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


# Bookings in these states hold their room
ACTIVE_BOOKING_STATUSES = [
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.CHECKED_IN,
]


class RoomType(Model):
    id = fields.UUIDField(primary_key=True)
    name = fields.CharField(max_length=100, unique=True)
    description = fields.TextField(null=True)
    price = fields.DecimalField(max_digits=10, decimal_places=2)  # nightly rate
    max_guests = fields.IntField()
    discount_percent = fields.DecimalField(max_digits=5, decimal_places=2, null=True)
    total_rooms = fields.IntField(default=0)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "room_types"
        ordering = ["name"]


class Room(Model):
    id = fields.UUIDField(primary_key=True)
    number = fields.CharField(max_length=20, unique=True)
    floor = fields.IntField(default=0)
    room_type = fields.ForeignKeyField("models.RoomType", related_name="rooms")
    status = fields.CharEnumField(RoomStatus, default=RoomStatus.AVAILABLE)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "rooms"


class PromoCode(Model):
    id = fields.UUIDField(primary_key=True)
    code = fields.CharField(max_length=50, unique=True)  # matched case-sensitively
    title = fields.CharField(max_length=200, default="")
    description = fields.TextField(null=True)
    discount_type = fields.CharEnumField(DiscountType)
    discount_value = fields.DecimalField(max_digits=10, decimal_places=2)
    valid_from = fields.DatetimeField()
    valid_until = fields.DatetimeField()
    usage_cap = fields.IntField(null=True)  # None = unlimited
    used_count = fields.IntField(default=0)
    min_order_amount = fields.DecimalField(max_digits=10, decimal_places=2, null=True)
    max_discount_amount = fields.DecimalField(
        max_digits=10, decimal_places=2, null=True
    )
    applicable_room_types = fields.JSONField(null=True)  # list of ids, or ["all"]
    is_active = fields.BooleanField(default=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "promo_codes"
        ordering = ["-created_at"]


class Booking(Model):
    id = fields.UUIDField(primary_key=True)
    intent_key = fields.CharField(max_length=100, unique=True, null=True)
    user_id = fields.UUIDField(null=True)  # who submitted it

    guest_name = fields.CharField(max_length=150)
    guest_email = fields.CharField(max_length=254)
    guest_phone = fields.CharField(max_length=50)

    check_in = fields.DateField()
    check_out = fields.DateField()  # exclusive
    nights = fields.IntField()
    adults = fields.IntField(default=1)
    children = fields.IntField(default=0)
    room_count = fields.IntField(default=1)

    room_type = fields.ForeignKeyField("models.RoomType", related_name="bookings")
    room = fields.ForeignKeyField("models.Room", related_name="bookings")
    promo_code = fields.ForeignKeyField(
        "models.PromoCode", related_name="bookings", null=True
    )

    # Pricing snapshot: frozen at confirmation, never recomputed retroactively
    original_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    discount_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    base_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    taxes = fields.JSONField(default=list)
    total_tax_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    total_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    tax_fallback = fields.BooleanField(default=False)

    status = fields.CharEnumField(BookingStatus, default=BookingStatus.PENDING)
    payment_status = fields.CharEnumField(
        PaymentStatus, default=PaymentStatus.PENDING
    )
    special_requests = fields.TextField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-created_at"]


class Account(Model):
    id = fields.UUIDField(primary_key=True)
    name = fields.CharField(max_length=150)
    account_type = fields.CharEnumField(AccountType, default=AccountType.MAIN)
    is_main = fields.BooleanField(default=False)
    owner_id = fields.UUIDField(null=True)  # staff user for sub-accounts
    balance = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    is_active = fields.BooleanField(default=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "accounts"
        ordering = ["created_at"]


class Payment(Model):
    id = fields.UUIDField(primary_key=True)
    booking = fields.ForeignKeyField("models.Booking", related_name="payments")
    account = fields.ForeignKeyField("models.Account", related_name="payments")
    amount = fields.DecimalField(max_digits=12, decimal_places=2)
    method = fields.CharEnumField(PaymentMethod)
    reference = fields.CharField(max_length=100, null=True)
    received_by = fields.CharField(max_length=150)
    notes = fields.TextField(null=True)

    # Audit trail
    is_modification = fields.BooleanField(default=False)
    original_amount = fields.DecimalField(max_digits=12, decimal_places=2, null=True)
    modification_reason = fields.TextField(null=True)
    reversed = fields.BooleanField(default=False)
    reversed_at = fields.DatetimeField(null=True)
    reversal_reason = fields.TextField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "payments"
        ordering = ["created_at"]


class Transaction(Model):
    """Immutable ledger entry. Balances are only ever moved by inserting one."""

    id = fields.UUIDField(primary_key=True)
    account = fields.ForeignKeyField("models.Account", related_name="transactions")
    type = fields.CharEnumField(TransactionType)
    category = fields.CharEnumField(TransactionCategory)
    amount = fields.DecimalField(max_digits=14, decimal_places=2)  # always > 0
    reference_type = fields.CharEnumField(ReferenceType, null=True)
    reference_id = fields.CharField(max_length=64, null=True)
    payment = fields.ForeignKeyField(
        "models.Payment", related_name="transactions", null=True
    )
    compensates = fields.ForeignKeyField(
        "models.Transaction", related_name="compensations", null=True
    )
    description = fields.CharField(max_length=255)
    processed_by = fields.CharField(max_length=150, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "transactions"
        ordering = ["created_at"]


class Invoice(Model):
    """Bill for one booking. Guest, stay and amounts are copied at issue time."""

    id = fields.UUIDField(primary_key=True)
    invoice_number = fields.CharField(max_length=32, unique=True)
    booking = fields.OneToOneField("models.Booking", related_name="invoice")

    guest_name = fields.CharField(max_length=150)
    guest_email = fields.CharField(max_length=254)
    guest_phone = fields.CharField(max_length=50)

    check_in = fields.DateField()
    check_out = fields.DateField()
    nights = fields.IntField()
    adults = fields.IntField()
    children = fields.IntField()
    room_type_name = fields.CharField(max_length=100)
    room_number = fields.CharField(max_length=20)

    original_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    discount_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    base_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    taxes = fields.JSONField(default=list)
    total_tax_amount = fields.DecimalField(max_digits=12, decimal_places=2)
    total_amount = fields.DecimalField(max_digits=12, decimal_places=2)

    due_date = fields.DateField()
    notes = fields.TextField(null=True)
    terms = fields.TextField()
    issued_by = fields.CharField(max_length=150)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "invoices"
        ordering = ["created_at"]
