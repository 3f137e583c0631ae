from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.deps import CurrentUser, can_read_accounts
from app.revenue import revenue_crud
from app.schemas import ReportPeriod, RevenueReport

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/revenue", response_model=RevenueReport)
async def revenue_report(
    period: ReportPeriod = Query(default=ReportPeriod.CUSTOM),
    on: date | None = Query(default=None),
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    _: CurrentUser = Depends(can_read_accounts),
) -> RevenueReport:
    """
    Revenue for a daily, monthly or yearly period containing ``on``, or for
    an explicit ``start``..``end`` window when ``period`` is custom.
    """
    if period == ReportPeriod.CUSTOM:
        if start is None or end is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A custom report needs both start and end",
            )
        return await revenue_crud.revenue_report(start, end)

    if on is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"A {period} report needs the 'on' date",
        )
    return await revenue_crud.period_report(period, on)
