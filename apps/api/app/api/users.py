from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from apps.api.app.api.deps import get_current_user
from apps.api.app.db.session import get_db
from apps.api.app.models.user import User
from apps.api.app.schemas.risk import RiskRulesOut, RiskRulesUpdate
from apps.api.app.schemas.user import TelegramLinkOut, TelegramLinkUpdate, UserOut
from apps.api.app.services.audit import log_audit_event
from apps.api.app.services.risk_rules import (
    has_custom_rules,
    resolve_risk_rules,
    update_risk_rules,
)
from apps.worker.app.engine.notifier import TelegramConfig

router = APIRouter(prefix="/users", tags=["users"])


def _rules_out(db: Session, user_id: str) -> RiskRulesOut:
    rules = resolve_risk_rules(db, user_id)
    return RiskRulesOut(
        **rules.to_dict(),
        source="custom" if has_custom_rules(db, user_id) else "default",
    )


@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)):
    return UserOut(
        id=current_user.id,
        email=current_user.email,
        role=current_user.role,
        telegram_linked=bool(current_user.telegram_chat_id),
    )


@router.get("/me/rules", response_model=RiskRulesOut)
def get_my_rules(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _rules_out(db, current_user.id)


@router.patch("/me/rules", response_model=RiskRulesOut)
def update_my_rules(
    payload: RiskRulesUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No rule fields to update")

    try:
        update_risk_rules(db, current_user.id, updates)
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    log_audit_event(
        db,
        action="risk.rules.updated",
        user_id=current_user.id,
        entity_type="risk_rules",
        entity_id=current_user.id,
        details=updates,
    )
    db.commit()
    return _rules_out(db, current_user.id)


@router.put("/me/telegram", response_model=TelegramLinkOut)
def set_my_telegram(
    payload: TelegramLinkUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    chat_id = (payload.telegram_chat_id or "").strip() or None
    current_user.telegram_chat_id = chat_id
    log_audit_event(
        db,
        action="telegram.linked" if chat_id else "telegram.unlinked",
        user_id=current_user.id,
        entity_type="user",
        entity_id=current_user.id,
    )
    db.commit()
    return TelegramLinkOut(
        telegram_chat_id=chat_id,
        bot_username=TelegramConfig.from_settings().link_username,
    )
