from fastapi import APIRouter, Depends, status

from app.cache import invalidate_tax_rules_cache
from app.deps import CurrentUser, can_manage_inventory, get_current_user, get_tax_rules
from app.pricing import calculate_taxes
from app.schemas import TaxBreakdown, TaxCalculationRequest, TaxRuleSet

router = APIRouter(tags=["taxes"])


@router.post("/calculate-taxes", response_model=TaxBreakdown)
async def preview_taxes(
    payload: TaxCalculationRequest,
    _: CurrentUser = Depends(get_current_user),
    tax_rules: TaxRuleSet = Depends(get_tax_rules),
) -> TaxBreakdown:
    return calculate_taxes(
        payload.original_amount,
        payload.discount_amount,
        tax_rules.rules,
        fallback=tax_rules.fallback,
    )


@router.delete("/tax-rules/cache", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_tax_cache(
    _: CurrentUser = Depends(can_manage_inventory),
) -> None:
    """Drop cached tax rates so the next request re-reads hotel-info-ms."""
    await invalidate_tax_rules_cache()
