from enum import StrEnum


class BookingScope(StrEnum):
    # Guest scopes
    READ = "bookings:read"  # view own bookings
    WRITE = "bookings:write"  # create a booking
    CANCEL = "bookings:cancel"  # cancel own booking

    # Front-desk scopes
    MANAGE = "bookings:manage"  # view all, edit, check in / check out

    # Admin scopes
    ADMIN = "admin:bookings"


class BillingScope(StrEnum):
    READ = "billing:read"  # payment history
    WRITE = "billing:write"  # record / edit / reverse payments


class AccountScope(StrEnum):
    READ = "accounts:read"  # balances and transaction log
    MANAGE = "accounts:manage"  # manual deposits, withdrawals, transfers


class InventoryScope(StrEnum):
    MANAGE = "inventory:manage"  # room types, rooms, promo codes, tax cache


SCOPE_DESCRIPTIONS: dict[str, str] = {
    BookingScope.READ: "View your own bookings.",
    BookingScope.WRITE: "Create a new booking.",
    BookingScope.CANCEL: "Cancel your own booking.",
    BookingScope.MANAGE: "View and edit all bookings, check guests in and out.",
    BookingScope.ADMIN: "Unrestricted booking administration.",
    BillingScope.READ: "View payment history for a booking.",
    BillingScope.WRITE: "Record, edit and reverse payments.",
    AccountScope.READ: "View account balances and transactions.",
    AccountScope.MANAGE: "Perform manual deposits, withdrawals and transfers.",
    InventoryScope.MANAGE: "Manage room types, rooms and promo codes.",
}
