import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from apps.api.app.api.deps import get_current_user, require_cron_secret, require_role
from apps.api.app.db.session import get_db
from apps.api.app.models.audit_log import AuditLog
from apps.api.app.models.user import User
from apps.api.app.schemas.audit import AuditOut
from apps.api.app.schemas.risk import ConnectionCheckItem, ConnectionCheckOut, SweepOut
from apps.worker.app.engine import risk_runtime
from apps.worker.app.engine import notifier as telegram

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ops", tags=["ops"])


def _run_sweep():
    gateway = risk_runtime.build_account_gateway()
    if gateway is None:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "ok": False,
                "error": "METATRADERAPI_API_KEY is not configured",
                "accounts_checked": 0,
                "results": [],
            },
        )

    result = risk_runtime.run_risk_check_all(
        gateway=gateway,
        dispatcher=risk_runtime.build_alert_dispatcher(),
    )
    logger.info(
        "Risk sweep: %d accounts, %d failed",
        result.accounts_checked,
        sum(1 for r in result.results if not r.ok),
    )
    return SweepOut(
        ok=result.ok,
        accounts_checked=result.accounts_checked,
        results=[
            {
                "user_ref": r.user_ref,
                "account_ref": r.account_ref,
                "ok": r.ok,
                "error": r.error,
                "findings_count": r.findings_count,
            }
            for r in result.results
        ],
    )


@router.get("/cron/check-risk-all", response_model=SweepOut, dependencies=[Depends(require_cron_secret)])
def cron_check_risk_all():
    return _run_sweep()


@router.post("/cron/check-risk-all", response_model=SweepOut, dependencies=[Depends(require_cron_secret)])
def cron_check_risk_all_post():
    return _run_sweep()


def _check(check_id: str, name: str, state: str, message: str, detail: Optional[str] = None) -> ConnectionCheckItem:
    return ConnectionCheckItem(id=check_id, name=name, status=state, message=message, detail=detail)


@router.get("/notifications/connection-check", response_model=ConnectionCheckOut)
def notifications_connection_check(
    current_user: User = Depends(get_current_user),
):
    notifier = telegram.build_notifier()
    config = notifier.config
    checks = []

    if notifier.is_configured:
        checks.append(_check("bot_token", "Bot token", "ok", "TELEGRAM_BOT_TOKEN is set"))
    else:
        checks.append(_check("bot_token", "Bot token", "fail", "TELEGRAM_BOT_TOKEN is not set"))

    if config.bot_username:
        checks.append(_check("bot_username", "Bot username", "ok", f"@{config.bot_username}"))
    else:
        checks.append(
            _check(
                "bot_username",
                "Bot username",
                "warn",
                "TELEGRAM_BOT_USERNAME is not set",
                f"Link instructions fall back to @{config.link_username}",
            )
        )

    if notifier.has_alert_channel:
        checks.append(_check("alert_channel", "Alert channel", "ok", "TELEGRAM_ALERT_CHANNEL_ID is set"))
    else:
        checks.append(
            _check("alert_channel", "Alert channel", "warn", "No operations channel; only linked users are notified")
        )

    if current_user.telegram_chat_id:
        checks.append(_check("user_chat", "Your Telegram", "ok", "Chat linked"))
    else:
        checks.append(
            _check("user_chat", "Your Telegram", "warn", "No chat linked", "Set it with PUT /users/me/telegram")
        )

    if notifier.is_configured:
        me = notifier.get_me()
        if me.get("ok"):
            username = (me.get("result") or {}).get("username") or "?"
            checks.append(_check("bot_api", "Bot API (getMe)", "ok", f"Bot reachable as @{username}"))
        else:
            checks.append(
                _check("bot_api", "Bot API (getMe)", "fail", "Bot API probe failed", me.get("description"))
            )

    return ConnectionCheckOut(
        ok=all(c.status != "fail" for c in checks),
        checks=checks,
    )


@router.get("/audit/me", response_model=list[AuditOut])
def my_audit(
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = (
        db.execute(
            select(AuditLog)
            .where(AuditLog.user_id == current_user.id)
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return rows


@router.get("/audit/all", response_model=list[AuditOut])
def all_audit(
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role("admin")),
):
    rows = (
        db.execute(
            select(AuditLog)
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return rows
