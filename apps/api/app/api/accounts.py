from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from apps.api.app.api.deps import get_current_user
from apps.api.app.db.session import get_db
from apps.api.app.models.user import User
from apps.api.app.schemas.account import (
    TradingAccountCreate,
    TradingAccountLink,
    TradingAccountOut,
)
from apps.api.app.services.audit import log_audit_event
from apps.api.app.services.trading_accounts import (
    create_trading_account,
    get_user_account,
    list_user_accounts,
)

router = APIRouter(prefix="/accounts", tags=["accounts"])


def _account_or_404(db: Session, user: User, account_id: str):
    account = get_user_account(db, user.id, account_id)
    if not account:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return account


@router.get("", response_model=list[TradingAccountOut])
def list_accounts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return list_user_accounts(db, current_user.id)


@router.post("", response_model=TradingAccountOut, status_code=status.HTTP_201_CREATED)
def add_account(
    payload: TradingAccountCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    account = create_trading_account(
        db,
        user_id=current_user.id,
        platform=payload.platform,
        account_number=payload.account_number,
        investor_password=payload.investor_password,
        name=payload.name,
        broker_account_id=payload.broker_account_id,
    )
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Account already added")

    log_audit_event(
        db,
        action="account.created",
        user_id=current_user.id,
        entity_type="trading_account",
        entity_id=account.id,
        details={"platform": account.platform, "linked": bool(account.broker_account_id)},
    )
    db.commit()
    db.refresh(account)
    return account


@router.patch("/{account_id}", response_model=TradingAccountOut)
def link_account(
    account_id: str,
    payload: TradingAccountLink,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    account = _account_or_404(db, current_user, account_id)
    account.broker_account_id = (payload.broker_account_id or "").strip() or None
    log_audit_event(
        db,
        action="account.linked" if account.broker_account_id else "account.unlinked",
        user_id=current_user.id,
        entity_type="trading_account",
        entity_id=account.id,
    )
    db.commit()
    db.refresh(account)
    return account


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(
    account_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    account = _account_or_404(db, current_user, account_id)
    db.delete(account)
    log_audit_event(
        db,
        action="account.deleted",
        user_id=current_user.id,
        entity_type="trading_account",
        entity_id=account_id,
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
