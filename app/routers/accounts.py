from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.deps import CurrentUser, can_manage_accounts, can_read_accounts
from app.ledger import ledger_crud
from app.schemas import (
    AccountCreate,
    AccountResponse,
    AccountSummary,
    LedgerPosting,
    ManualTransactionCreate,
    TransactionFilters,
    TransactionResponse,
    TransferCreate,
    TransferResult,
    UserAccountCreate,
)

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get("/", response_model=list[AccountResponse])
async def list_accounts(
    active_only: bool = Query(default=True),
    _: CurrentUser = Depends(can_read_accounts),
) -> list[AccountResponse]:
    return await ledger_crud.list_accounts(active_only=active_only)


@router.post("/", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def create_account(
    payload: AccountCreate,
    current_user: CurrentUser = Depends(can_manage_accounts),
) -> AccountResponse:
    return await ledger_crud.create_account(payload, processed_by=current_user.username)


@router.post("/user-accounts", response_model=AccountResponse)
async def user_account(
    payload: UserAccountCreate,
    _: CurrentUser = Depends(can_manage_accounts),
) -> AccountResponse:
    """Return the owner's user account, opening it on first use."""
    return await ledger_crud.get_or_create_user_account(
        payload.owner_id, payload.owner_name
    )


@router.get("/transactions",response_model=list[TransactionResponse])
async def list_transactions(
    filters: TransactionFilters = Depends(),
    _: CurrentUser = Depends(can_read_accounts),
) -> list[TransactionResponse]:
    return await ledger_crud.list_transactions(filters)


@router.get("/{account_id}/summary", response_model=AccountSummary)
async def account_summary(
    account_id: UUID,
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    _: CurrentUser = Depends(can_read_accounts),
) -> AccountSummary:
    if not await ledger_crud.get_account(account_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Account not found"
        )
    return await ledger_crud.summarize(account_id, since=since, until=until)


@router.post("/manual-transaction", response_model=LedgerPosting)
async def manual_transaction(
    payload: ManualTransactionCreate,
    current_user: CurrentUser = Depends(can_manage_accounts),
) -> LedgerPosting:
    """Deposit into or withdraw from an account. Withdrawals never overdraw."""
    return await ledger_crud.manual_transaction(
        payload, processed_by=current_user.username
    )


@router.post("/transfer", response_model=TransferResult)
async def transfer(
    payload: TransferCreate,
    current_user: CurrentUser = Depends(can_manage_accounts),
) -> TransferResult:
    return await ledger_crud.transfer(payload, processed_by=current_user.username)
