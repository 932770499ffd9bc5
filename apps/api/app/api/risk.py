from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from apps.api.app.api.deps import get_current_user
from apps.api.app.db.session import get_db
from apps.api.app.models.user import User
from apps.api.app.schemas.risk import (
    CheckRiskOut,
    CheckRiskRequest,
    DryRunOut,
    LiveRiskOut,
    RiskRulesOut,
    RiskStatusOut,
)
from apps.api.app.services.risk_rules import has_custom_rules, resolve_risk_rules
from apps.api.app.services.trading_accounts import (
    first_linked_broker_account_id,
    user_owns_broker_account,
)
from apps.worker.app.engine import risk_runtime

router = APIRouter(prefix="/risk", tags=["risk"])

NO_ACCOUNT_ERROR = "No MetaTrader account linked. Add an account with its provider id first."
NO_API_KEY_ERROR = "METATRADERAPI_API_KEY is not configured"


def _resolve_account_id(db: Session, user: User, account_id: Optional[str]) -> Optional[str]:
    account_id = (account_id or "").strip()
    if not account_id:
        return first_linked_broker_account_id(db, user.id)
    if not user_owns_broker_account(db, user.id, account_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return account_id


@router.post("/check", response_model=CheckRiskOut)
def check_risk(
    payload: Optional[CheckRiskRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    account_id = _resolve_account_id(db, current_user, payload.account_id if payload else None)
    if not account_id:
        return CheckRiskOut(ok=False, error=NO_ACCOUNT_ERROR, findings=[])

    gateway = risk_runtime.build_account_gateway()
    if gateway is None:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": NO_API_KEY_ERROR, "findings": []},
        )

    result = risk_runtime.run_risk_check_for_account(
        db,
        user_id=current_user.id,
        account_id=account_id,
        gateway=gateway,
        dispatcher=risk_runtime.build_alert_dispatcher(),
    )
    return result.to_dict()


@router.get("/live-check", response_model=DryRunOut)
def live_check(
    account_id: Optional[str] = Query(default=None),
    include_raw: bool = Query(default=False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    account_id = _resolve_account_id(db, current_user, account_id)
    if not account_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_ACCOUNT_ERROR)

    gateway = risk_runtime.build_account_gateway()
    if gateway is None:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=NO_API_KEY_ERROR)

    result = risk_runtime.run_risk_check_dry_run(
        db,
        user_id=current_user.id,
        account_id=account_id,
        gateway=gateway,
        include_raw=include_raw,
    )
    return result.to_dict()


@router.get("/status", response_model=RiskStatusOut)
def risk_status(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rules = resolve_risk_rules(db, current_user.id)
    rules_out = RiskRulesOut(
        **rules.to_dict(),
        source="custom" if has_custom_rules(db, current_user.id) else "default",
    )

    account_id = first_linked_broker_account_id(db, current_user.id)
    gateway = risk_runtime.build_account_gateway() if account_id else None
    if gateway is None:
        return RiskStatusOut(rules=rules_out, live=None)

    live = risk_runtime.run_live_status(account_id=account_id, gateway=gateway)
    return RiskStatusOut(
        rules=rules_out,
        live=LiveRiskOut(
            as_of=live.as_of,
            daily_loss_pct=live.daily_loss_pct,
            current_exposure_pct=live.current_exposure_pct,
        ),
    )
