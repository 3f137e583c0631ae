"""
Revenue/payment ledger.

Account balances move only through ``post_transaction``, which writes the
immutable Transaction row and applies its signed amount to the locked account
in the same database transaction. Edits and deletions of payments never
rewrite history: they post a compensating entry for the old effect first and,
for edits, a new entry for the new amount second.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from loguru import logger
from tortoise.exceptions import BaseORMException
from tortoise.transactions import in_transaction

from app import settings
from app.errors import (
    BookingError,
    LedgerError,
    LedgerIntegrityError,
    PaymentReversedError,
)
from app.models import (
    Account,
    AccountType,
    Booking,
    BookingStatus,
    Payment,
    PaymentStatus,
    ReferenceType,
    Transaction,
    TransactionCategory,
    TransactionType,
)
from app.pricing import ZERO, to_money
from app.schemas import (
    AccountCreate,
    AccountResponse,
    AccountSummary,
    LedgerPosting,
    ManualTransactionCreate,
    ManualTransactionKind,
    PaymentCreate,
    PaymentResponse,
    PaymentResult,
    PaymentSummary,
    PaymentUpdate,
    TransactionFilters,
    TransactionResponse,
    TransferCreate,
    TransferResult,
)


def signed_amount(tx_type: TransactionType, amount: Decimal) -> Decimal:
    return amount if tx_type == TransactionType.CREDIT else -amount


def derive_payment_status(total_paid: Decimal, total_amount: Decimal) -> PaymentStatus:
    if total_paid >= total_amount:
        return PaymentStatus.PAID
    if total_paid > 0:
        return PaymentStatus.PARTIALLY_PAID
    return PaymentStatus.PENDING


# ---------------------------------------------------------------------------
# Primitives: callers must already be inside in_transaction()
# ---------------------------------------------------------------------------


async def get_main_account() -> Account:
    account = await Account.filter(is_main=True, is_active=True).first()
    if account is None:
        account = await Account.create(
            name=settings.MAIN_ACCOUNT_NAME,
            account_type=AccountType.MAIN,
            is_main=True,
            balance=ZERO,
        )
        logger.info("Created main hotel account {}", account.id)
    return account


async def lock_account(account_id: UUID) -> Account:
    account = await Account.filter(id=account_id).select_for_update().first()
    if account is None:
        raise LedgerError("Account not found", account_id=str(account_id))
    if not account.is_active:
        raise LedgerError("Account is inactive", account_id=str(account_id))
    return account


async def post_transaction(
    account_id: UUID,
    tx_type: TransactionType,
    amount: Decimal,
    category: TransactionCategory,
    description: str,
    *,
    reference_type: ReferenceType | None = None,
    reference_id: str | None = None,
    payment_id: UUID | None = None,
    compensates_id: UUID | None = None,
    processed_by: str | None = None,
    allow_negative: bool = True,
) -> tuple[Account, Transaction]:
    """
    Append one ledger entry and move the account balance by its signed amount.

    Savings accounts never go negative; other accounts only refuse a negative
    balance when ``allow_negative`` is False (withdrawals, transfers).
    Compensating entries are always posted with ``allow_negative=True``.
    """
    amount = to_money(amount)
    if amount <= 0:
        raise LedgerError("Transaction amount must be greater than 0")

    account = await lock_account(account_id)
    new_balance = to_money(Decimal(account.balance) + signed_amount(tx_type, amount))
    if new_balance < 0 and (
        not allow_negative or account.account_type == AccountType.SAVINGS
    ):
        raise LedgerError(
            "Insufficient funds",
            account_id=str(account.id),
            balance=str(account.balance),
        )

    try:
        tx = await Transaction.create(
            account_id=account.id,
            type=tx_type,
            category=category,
            amount=amount,
            reference_type=reference_type,
            reference_id=reference_id,
            payment_id=payment_id,
            compensates_id=compensates_id,
            description=description[:255],
            processed_by=processed_by,
        )
        account.balance = new_balance
        await account.save(update_fields=["balance", "updated_at"])
    except BaseORMException as exc:
        raise LedgerIntegrityError(
            "Could not write ledger entry; nothing was committed",
            account_id=str(account.id),
        ) from exc
    return account, tx


async def open_credit(payment_id: UUID) -> Transaction | None:
    """The payment's credit entry that has not been compensated yet."""
    credits = await Transaction.filter(
        payment_id=payment_id, type=TransactionType.CREDIT
    ).order_by("created_at")
    compensated = set(
        await Transaction.filter(
            payment_id=payment_id, compensates_id__isnull=False
        ).values_list("compensates_id", flat=True)
    )
    remaining = [c for c in credits if c.id not in compensated]
    return remaining[-1] if remaining else None


async def reverse_payment(
    payment: Payment,
    reason: str | None,
    processed_by: str | None,
) -> Transaction:
    """Post the compensating debit for ``payment`` and flag it reversed."""
    if payment.reversed:
        raise PaymentReversedError(
            "Payment has already been reversed", payment_id=str(payment.id)
        )

    credit = await open_credit(payment.id)
    _, debit = await post_transaction(
        payment.account_id,
        TransactionType.DEBIT,
        payment.amount,
        TransactionCategory.PAYMENT_REVERSAL,
        f"Payment reversal: {reason or 'Revenue reversal'}",
        reference_type=ReferenceType.PAYMENT,
        reference_id=str(payment.id),
        payment_id=payment.id,
        compensates_id=credit.id if credit else None,
        processed_by=processed_by,
    )
    payment.reversed = True
    payment.reversed_at = datetime.now(timezone.utc)
    payment.reversal_reason = reason or "Revenue reversal"
    await payment.save(
        update_fields=["reversed", "reversed_at", "reversal_reason", "updated_at"]
    )
    return debit


async def reverse_booking_payments(
    booking: Booking,
    reason: str | None,
    processed_by: str | None,
) -> list[Transaction]:
    """Reverse every active payment of ``booking``. Used by payment-status overrides."""
    payments = await Payment.filter(
        booking_id=booking.id, reversed=False
    ).select_for_update()
    entries = [await reverse_payment(p, reason, processed_by) for p in payments]
    if entries:
        logger.info(
            "Reversed {} payment(s) for booking {}: {}",
            len(entries),
            booking.id,
            reason,
        )
    return entries


async def paid_total(booking_id: UUID) -> Decimal:
    amounts = await Payment.filter(booking_id=booking_id, reversed=False).values_list(
        "amount", flat=True
    )
    return to_money(sum((Decimal(a) for a in amounts), ZERO))


async def settle(booking: Booking) -> Decimal:
    """
    Recompute and persist ``booking.payment_status`` from its active payments.
    A cancelled booking with nothing left paid goes back to ``cancelled``.
    """
    total_paid = await paid_total(booking.id)
    if booking.status == BookingStatus.CANCELLED and total_paid == 0:
        booking.payment_status = PaymentStatus.CANCELLED
    else:
        booking.payment_status = derive_payment_status(
            total_paid, Decimal(booking.total_amount)
        )
    await booking.save(update_fields=["payment_status", "updated_at"])
    return total_paid


async def _lock_booking(booking_id: UUID) -> Booking | None:
    return await Booking.filter(id=booking_id).select_for_update().first()


async def _lock_payment(payment_id: UUID) -> Payment | None:
    return await Payment.filter(id=payment_id).select_for_update().first()


def _tx_response(tx: Transaction) -> TransactionResponse:
    return TransactionResponse.model_validate(tx, from_attributes=True)


def _account_response(account: Account) -> AccountResponse:
    return AccountResponse.model_validate(account, from_attributes=True)


# ---------------------------------------------------------------------------
# CRUD surface
# ---------------------------------------------------------------------------


class LedgerCRUD:
    def _result(
        self,
        payment: Payment,
        booking: Booking,
        total_paid: Decimal,
        entries: list[Transaction],
    ) -> PaymentResult:
        total = Decimal(booking.total_amount)
        return PaymentResult(
            payment=PaymentResponse.model_validate(payment, from_attributes=True),
            payment_status=booking.payment_status,
            total_paid=total_paid,
            balance_due=max(ZERO, to_money(total - total_paid)),
            ledger=[_tx_response(e) for e in entries],
        )

    # -- payments ------------------------------------------------------------

    async def record_payment(
        self, payload: PaymentCreate, received_by: str
    ) -> PaymentResult | None:
        amount = to_money(payload.amount)
        try:
            async with in_transaction():
                booking = await _lock_booking(payload.booking_id)
                if booking is None:
                    return None
                if booking.status == BookingStatus.CANCELLED:
                    raise LedgerError(
                        "Cannot record a payment against a cancelled booking",
                        booking_id=str(booking.id),
                    )

                if payload.account_id is not None:
                    account_id = payload.account_id
                else:
                    account_id = (await get_main_account()).id

                payment = await Payment.create(
                    booking_id=booking.id,
                    account_id=account_id,
                    amount=amount,
                    method=payload.method,
                    reference=payload.reference,
                    received_by=payload.received_by or received_by,
                    notes=payload.notes or "Bill payment",
                )
                _, credit = await post_transaction(
                    account_id,
                    TransactionType.CREDIT,
                    amount,
                    TransactionCategory.ACCOMMODATION_REVENUE,
                    f"Payment for booking {booking.id}",
                    reference_type=ReferenceType.BOOKING,
                    reference_id=str(booking.id),
                    payment_id=payment.id,
                    processed_by=payment.received_by,
                )
                total_paid = await settle(booking)
        except BookingError:
            raise
        except BaseORMException as exc:
            raise LedgerIntegrityError(
                "Payment could not be recorded; nothing was committed"
            ) from exc

        logger.info(
            "Payment {} of {} recorded for booking {} ({})",
            payment.id,
            amount,
            booking.id,
            booking.payment_status,
        )
        return self._result(payment, booking, total_paid, [credit])

    async def edit_payment(
        self, payment_id: UUID, payload: PaymentUpdate, processed_by: str
    ) -> PaymentResult | None:
        new_amount = to_money(payload.amount)
        entries: list[Transaction] = []
        async with in_transaction():
            payment = await _lock_payment(payment_id)
            if payment is None:
                return None
            if payment.reversed:
                raise PaymentReversedError(
                    "A reversed payment cannot be edited", payment_id=str(payment.id)
                )
            booking = await _lock_booking(payment.booking_id)
            old_amount = to_money(payment.amount)
            reason = payload.reason or "Payment adjustment"

            if new_amount != old_amount:
                # Compensate the old effect first, then apply the new one
                credit = await open_credit(payment.id)
                _, debit = await post_transaction(
                    payment.account_id,
                    TransactionType.DEBIT,
                    old_amount,
                    TransactionCategory.PAYMENT_REVERSAL,
                    f"Payment modification (compensate {old_amount}): {reason}",
                    reference_type=ReferenceType.PAYMENT,
                    reference_id=str(payment.id),
                    payment_id=payment.id,
                    compensates_id=credit.id if credit else None,
                    processed_by=processed_by,
                )
                _, new_credit = await post_transaction(
                    payment.account_id,
                    TransactionType.CREDIT,
                    new_amount,
                    TransactionCategory.PAYMENT_ADJUSTMENT,
                    f"Payment modification (apply {new_amount}): {reason}",
                    reference_type=ReferenceType.PAYMENT,
                    reference_id=str(payment.id),
                    payment_id=payment.id,
                    processed_by=processed_by,
                )
                entries = [debit, new_credit]
                payment.is_modification = True
                payment.original_amount = old_amount
                payment.modification_reason = reason
                payment.amount = new_amount

            if payload.method is not None:
                payment.method = payload.method
            if payload.notes is not None:
                payment.notes = payload.notes
            await payment.save()
            total_paid = await settle(booking)

        logger.info(
            "Payment {} edited {} -> {} (booking {}, {})",
            payment.id,
            old_amount,
            new_amount,
            booking.id,
            booking.payment_status,
        )
        return self._result(payment, booking, total_paid, entries)

    async def delete_payment(
        self, payment_id: UUID, reason: str | None, processed_by: str
    ) -> PaymentResult | None:
        """Reverse a payment. The row stays, flagged ``reversed``, for the audit trail."""
        async with in_transaction():
            payment = await _lock_payment(payment_id)
            if payment is None:
                return None
            booking = await _lock_booking(payment.booking_id)
            debit = await reverse_payment(payment, reason, processed_by)
            total_paid = await settle(booking)

        logger.info(
            "Payment {} of {} reversed (booking {}, {})",
            payment.id,
            payment.amount,
            booking.id,
            booking.payment_status,
        )
        return self._result(payment, booking, total_paid, [debit])

    async def payment_summary(self, booking_id: UUID) -> PaymentSummary | None:
        booking = await Booking.get_or_none(id=booking_id)
        if booking is None:
            return None
        payments = await Payment.filter(booking_id=booking_id)
        total_paid = await paid_total(booking_id)
        total = Decimal(booking.total_amount)
        return PaymentSummary(
            booking_id=booking.id,
            total_amount=total,
            total_paid=total_paid,
            balance_due=max(ZERO, to_money(total - total_paid)),
            payment_status=booking.payment_status,
            payments=[
                PaymentResponse.model_validate(p, from_attributes=True) for p in payments
            ],
        )

    # -- accounts ------------------------------------------------------------

    async def create_account(
        self, payload: AccountCreate, processed_by: str
    ) -> AccountResponse:
        async with in_transaction():
            is_main = payload.account_type == AccountType.MAIN
            if is_main and await Account.exists(is_main=True, is_active=True):
                raise LedgerError("A main account already exists")
            account = await Account.create(
                name=payload.name,
                account_type=payload.account_type,
                is_main=is_main,
                owner_id=payload.owner_id,
                balance=ZERO,
            )
            if payload.opening_balance > 0:
                account, _ = await post_transaction(
                    account.id,
                    TransactionType.CREDIT,
                    payload.opening_balance,
                    TransactionCategory.OPENING_BALANCE,
                    "Opening Balance",
                    reference_type=ReferenceType.ADJUSTMENT,
                    processed_by=processed_by,
                )
        logger.info("Account {} '{}' created", account.id, account.name)
        return _account_response(account)

    async def get_account(self, account_id: UUID) -> AccountResponse | None:
        account = await Account.get_or_none(id=account_id)
        return _account_response(account) if account else None

    async def get_main_account(self) -> AccountResponse:
        async with in_transaction():
            account = await get_main_account()
        return _account_response(account)

    async def get_or_create_user_account(
        self, owner_id: UUID, owner_name: str
    ) -> AccountResponse:
        async with in_transaction():
            account = await Account.filter(
                owner_id=owner_id, account_type=AccountType.USER
            ).first()
            if account is None:
                account = await Account.create(
                    name=f"{owner_name} Account",
                    account_type=AccountType.USER,
                    owner_id=owner_id,
                    balance=ZERO,
                )
        return _account_response(account)

    async def list_accounts(self, active_only: bool = True) -> list[AccountResponse]:
        qs = Account.all()
        if active_only:
            qs = qs.filter(is_active=True)
        return [_account_response(a) for a in await qs]

    async def list_transactions(
        self, filters: TransactionFilters
    ) -> list[TransactionResponse]:
        qs = Transaction.all().order_by("-created_at")
        if filters.account_id is not None:
            qs = qs.filter(account_id=filters.account_id)
        if filters.reference_id is not None:
            qs = qs.filter(reference_id=filters.reference_id)
        if filters.payment_id is not None:
            qs = qs.filter(payment_id=filters.payment_id)
        offset = (filters.page - 1) * filters.page_size
        return [
            _tx_response(t) for t in await qs.offset(offset).limit(filters.page_size)
        ]

    async def manual_transaction(
        self, payload: ManualTransactionCreate, processed_by: str
    ) -> LedgerPosting:
        if payload.type == ManualTransactionKind.DEPOSIT:
            tx_type, category = (
                TransactionType.CREDIT,
                TransactionCategory.MANUAL_DEPOSIT,
            )
        else:
            tx_type, category = (
                TransactionType.DEBIT,
                TransactionCategory.MANUAL_WITHDRAWAL,
            )

        async with in_transaction():
            account, tx = await post_transaction(
                payload.account_id,
                tx_type,
                payload.amount,
                category,
                payload.description,
                reference_type=ReferenceType.ADJUSTMENT,
                processed_by=processed_by,
                allow_negative=False,
            )
        logger.info(
            "Manual {} of {} on account {}", payload.type, tx.amount, account.id
        )
        return LedgerPosting(
            account=_account_response(account), transaction=_tx_response(tx)
        )

    async def transfer(self, payload: TransferCreate, processed_by: str) -> TransferResult:
        if payload.from_account_id == payload.to_account_id:
            raise LedgerError("Cannot transfer to the same account")

        transfer_id = str(uuid4())
        async with in_transaction():
            # Lock both rows in a fixed order so opposite transfers cannot deadlock
            for account_id in sorted(
                (payload.from_account_id, payload.to_account_id), key=str
            ):
                await lock_account(account_id)

            source, debit = await post_transaction(
                payload.from_account_id,
                TransactionType.DEBIT,
                payload.amount,
                TransactionCategory.TRANSFER_OUT,
                payload.description,
                reference_type=ReferenceType.TRANSFER,
                reference_id=transfer_id,
                processed_by=processed_by,
                allow_negative=False,
            )
            destination, credit = await post_transaction(
                payload.to_account_id,
                TransactionType.CREDIT,
                payload.amount,
                TransactionCategory.TRANSFER_IN,
                payload.description,
                reference_type=ReferenceType.TRANSFER,
                reference_id=transfer_id,
                processed_by=processed_by,
            )

        logger.info(
            "Transferred {} from {} to {} ({})",
            debit.amount,
            source.id,
            destination.id,
            transfer_id,
        )
        return TransferResult(
            source=LedgerPosting(
                account=_account_response(source), transaction=_tx_response(debit)
            ),
            destination=LedgerPosting(
                account=_account_response(destination),
                transaction=_tx_response(credit),
            ),
        )

    async def derived_balance(self, account_id: UUID) -> Decimal:
        """Signed sum of every transaction on the account."""
        rows = await Transaction.filter(account_id=account_id).values_list(
            "type", "amount"
        )
        return to_money(
            sum((signed_amount(t, Decimal(a)) for t, a in rows), ZERO)
        )

    async def summarize(
        self,
        account_id: UUID,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> AccountSummary:
        qs = Transaction.filter(account_id=account_id)
        if since is not None:
            qs = qs.filter(created_at__gte=since)
        if until is not None:
            qs = qs.filter(created_at__lte=until)
        rows = await qs.values_list("type", "amount")

        credits = [Decimal(a) for t, a in rows if t == TransactionType.CREDIT]
        debits = [Decimal(a) for t, a in rows if t == TransactionType.DEBIT]
        total_credits = to_money(sum(credits, ZERO))
        total_debits = to_money(sum(debits, ZERO))
        return AccountSummary(
            account_id=account_id,
            total_credits=total_credits,
            total_debits=total_debits,
            net_amount=total_credits - total_debits,
            transaction_count=len(rows),
            credit_count=len(credits),
            debit_count=len(debits),
        )


ledger_crud = LedgerCRUD()
