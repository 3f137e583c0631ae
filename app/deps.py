from dataclasses import dataclass, field
from functools import lru_cache
from urllib.parse import unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status

from app import settings
from app.pricing import resolve_tax_rules
from app.schemas import TaxRuleSet
from app.scopes import AccountScope, BillingScope, BookingScope, InventoryScope


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return "admin:scopes" in self.scopes or BookingScope.ADMIN in self.scopes

    @property
    def is_staff(self) -> bool:
        """Front desk or admin: sees every booking, not only their own."""
        return self.is_admin or BookingScope.MANAGE in self.scopes


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Reads the headers injected by the gateway after forwardAuth validation.
    The token has already been verified: we just trust these headers.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(id=user_id, username=unquote(x_username), scopes=scopes)


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.
    Admins pass every check.

    Usage:
        @router.get("/protected")
        async def route(user = Depends(require_scopes("billing:read"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if current_user.is_admin:
            return current_user
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_write_booking = require_scopes(BookingScope.WRITE)
can_manage_booking = require_scopes(BookingScope.MANAGE)
can_read_billing = require_scopes(BillingScope.READ)
can_write_billing = require_scopes(BillingScope.WRITE)
can_read_accounts = require_scopes(AccountScope.READ)
can_manage_accounts = require_scopes(AccountScope.MANAGE)
can_manage_inventory = require_scopes(InventoryScope.MANAGE)


async def can_read_or_manage_booking(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    Passes if the user can read their own bookings or manage all bookings.
    - bookings:read   → guest sees own bookings
    - bookings:manage → front desk sees everything
    """
    if not (BookingScope.READ in current_user.scopes or current_user.is_staff):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.READ}' (guests) "
                f"or '{BookingScope.MANAGE}' (front desk)."
            ),
        )
    return current_user


# ---------------------------------------------------------------------------
# HotelInfoClient: thin async wrapper around hotel-info-ms (tax rules)
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_hotel_info_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.hotel_info_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class HotelInfoClient:
    """
    Thin async wrapper around the hotel-info-ms API, which owns the property's
    tax configuration. Errors propagate as httpx exceptions; the pricing layer
    decides how to degrade.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_hotel_info_http_client()

    async def get_tax_rules(self) -> list[dict]:
        """Returns ``[{"name": ..., "percentage": ...}, ...]`` in application order."""
        resp = await self._client.get("/hotel-info/taxes")
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, list):
            raise ValueError("hotel-info-ms returned a non-list tax payload")
        return data


_hotel_info_client = HotelInfoClient()


def get_hotel_info_client() -> HotelInfoClient:
    return _hotel_info_client


async def get_tax_rules(
    hotel_info_client: HotelInfoClient = Depends(get_hotel_info_client),
) -> TaxRuleSet:
    """Tax rules for this request: cached, with an explicit fallback."""
    return await resolve_tax_rules(hotel_info_client)
