from fastapi import APIRouter, Depends, Query, status

from app.deps import CurrentUser, can_manage_inventory, get_current_user
from app.promos import promo_crud
from app.schemas import (
    PromoCodeCreate,
    PromoCodeResponse,
    PromoValidateRequest,
    PromoValidation,
)

router = APIRouter(prefix="/promo-codes", tags=["promo-codes"])


@router.post("/validate", response_model=PromoValidation)
async def validate_promo(
    payload: PromoValidateRequest,
    _: CurrentUser = Depends(get_current_user),
) -> PromoValidation:
    """Check a code against an amount. Usage is only counted when a booking lands."""
    return await promo_crud.validate(payload.code, payload.room_type_id, payload.amount)


@router.get("/", response_model=list[PromoCodeResponse])
async def list_promos(
    active_only: bool = Query(default=False),
    _: CurrentUser = Depends(can_manage_inventory),
) -> list[PromoCodeResponse]:
    return await promo_crud.list_promos(active_only=active_only)


@router.post("/", response_model=PromoCodeResponse, status_code=status.HTTP_201_CREATED)
async def create_promo(
    payload: PromoCodeCreate,
    _: CurrentUser = Depends(can_manage_inventory),
) -> PromoCodeResponse:
    return await promo_crud.create_promo(payload)
