"""Tests for scope values and descriptions."""

from app.scopes import (
    SCOPE_DESCRIPTIONS,
    AccountScope,
    BillingScope,
    BookingScope,
    InventoryScope,
)

ALL_SCOPES = [*BookingScope, *BillingScope, *AccountScope, *InventoryScope]


class TestBookingScopeValues:
    def test_guest_read_scope(self):
        assert BookingScope.READ == "bookings:read"

    def test_guest_write_scope(self):
        assert BookingScope.WRITE == "bookings:write"

    def test_guest_cancel_scope(self):
        assert BookingScope.CANCEL == "bookings:cancel"

    def test_front_desk_manage_scope(self):
        assert BookingScope.MANAGE == "bookings:manage"

    def test_admin_super_scope(self):
        assert BookingScope.ADMIN == "admin:bookings"


class TestLedgerScopeValues:
    def test_billing_scopes(self):
        assert BillingScope.READ == "billing:read"
        assert BillingScope.WRITE == "billing:write"

    def test_account_scopes(self):
        assert AccountScope.READ == "accounts:read"
        assert AccountScope.MANAGE == "accounts:manage"

    def test_inventory_scope(self):
        assert InventoryScope.MANAGE == "inventory:manage"

    def test_all_scopes_are_strings(self):
        for scope in ALL_SCOPES:
            assert isinstance(scope, str)

    def test_scope_values_are_unique(self):
        assert len({str(s) for s in ALL_SCOPES}) == len(ALL_SCOPES)


class TestScopeDescriptions:
    def test_descriptions_is_a_dict(self):
        assert isinstance(SCOPE_DESCRIPTIONS, dict)

    def test_every_scope_has_a_description(self):
        for scope in ALL_SCOPES:
            assert scope in SCOPE_DESCRIPTIONS
            assert len(SCOPE_DESCRIPTIONS[scope]) > 0

    def test_all_description_values_are_non_empty_strings(self):
        for key, value in SCOPE_DESCRIPTIONS.items():
            assert isinstance(key, str)
            assert isinstance(value, str)
            assert len(value) > 0
