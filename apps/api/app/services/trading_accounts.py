from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from apps.api.app.models.trading_account import TradingAccount
from apps.api.app.services.crypto import encrypt_investor_password


def list_user_accounts(db: Session, user_id: str) -> list[TradingAccount]:
    return (
        db.execute(
            select(TradingAccount)
            .where(TradingAccount.user_id == user_id)
            .order_by(TradingAccount.created_at.asc(), TradingAccount.id.asc())
        )
        .scalars()
        .all()
    )


def get_user_account(db: Session, user_id: str, account_id: str) -> Optional[TradingAccount]:
    return (
        db.execute(
            select(TradingAccount).where(
                TradingAccount.id == account_id,
                TradingAccount.user_id == user_id,
            )
        )
        .scalar_one_or_none()
    )


def first_linked_broker_account_id(db: Session, user_id: str) -> Optional[str]:
    return (
        db.execute(
            select(TradingAccount.broker_account_id)
            .where(
                TradingAccount.user_id == user_id,
                TradingAccount.broker_account_id.is_not(None),
            )
            .order_by(TradingAccount.created_at.asc(), TradingAccount.id.asc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def user_owns_broker_account(db: Session, user_id: str, broker_account_id: str) -> bool:
    row = db.execute(
        select(TradingAccount.id).where(
            TradingAccount.user_id == user_id,
            TradingAccount.broker_account_id == broker_account_id,
        )
    ).first()
    return row is not None


def create_trading_account(
    db: Session,
    *,
    user_id: str,
    platform: str,
    account_number: str,
    investor_password: Optional[str] = None,
    name: Optional[str] = None,
    broker_account_id: Optional[str] = None,
) -> TradingAccount:
    row = TradingAccount(
        user_id=user_id,
        platform=platform,
        account_number=account_number,
        name=name,
        investor_password_encrypted=(
            encrypt_investor_password(investor_password) if investor_password else None
        ),
        broker_account_id=(broker_account_id or "").strip() or None,
    )
    db.add(row)
    return row
