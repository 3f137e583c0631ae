"""
Domain errors raised from the CRUD layer.

Every error is an HTTPException so FastAPI renders it without extra handlers.
``detail`` is always a dict with a machine-readable ``code`` and a ``message``,
so callers can tell "pick another room" apart from "retry later".
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class BookingError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "booking_error"

    def __init__(self, message: str, **extra: Any) -> None:
        self.message = message
        self.extra = extra
        super().__init__(
            status_code=type(self).status_code,
            detail={"code": self.code, "message": message, **extra},
        )


# -- validation: rejected synchronously, never retried ----------------------


class BookingValidationError(BookingError):
    status_code = 422
    code = "validation_error"


class PromoRejectedError(BookingValidationError):
    code = "promo_rejected"

    def __init__(self, reason: str, message: str) -> None:
        self.reason = reason
        super().__init__(message, reason=reason)


class InvalidTransitionError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_transition"


# -- contention: the caller should offer an alternative ----------------------


class ContentionError(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "contention"


class SoldOutError(ContentionError):
    code = "sold_out"


class RoomTakenError(ContentionError):
    code = "room_taken"


class PromoExhaustedError(ContentionError):
    code = "promo_exhausted"


# -- transient: the caller may retry with backoff -----------------------------


class TemporaryFailureError(BookingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "temporary_failure"


# -- ledger --------------------------------------------------------------------


class LedgerError(BookingError):
    status_code = 422
    code = "ledger_error"


class PaymentReversedError(LedgerError):
    status_code = status.HTTP_409_CONFLICT
    code = "payment_reversed"


class LedgerIntegrityError(BookingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "ledger_integrity"
