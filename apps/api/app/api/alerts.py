from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from apps.api.app.api.deps import get_current_user
from apps.api.app.core.time import utc_now
from apps.api.app.db.session import get_db
from apps.api.app.models.alert import Alert
from apps.api.app.models.user import User
from apps.api.app.schemas.alert import AlertCreate, AlertCreateOut, AlertOut, AlertUpdate
from apps.api.app.services.audit import log_audit_event
from apps.worker.app.engine import risk_runtime

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("", response_model=list[AlertOut])
def list_alerts(
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return (
        db.execute(
            select(Alert)
            .where(Alert.user_id == current_user.id)
            .order_by(Alert.alert_date.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )


@router.post("", response_model=AlertCreateOut, status_code=status.HTTP_201_CREATED)
def create_alert(
    payload: AlertCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    # manual alerts bypass the per-rule dedupe window
    alert = Alert(
        user_id=current_user.id,
        message=payload.message,
        severity=payload.severity,
        solution=payload.solution,
    )
    db.add(alert)
    db.flush()
    log_audit_event(
        db,
        action="alert.created",
        user_id=current_user.id,
        entity_type="alert",
        entity_id=alert.id,
        details={"severity": alert.severity, "manual": True},
    )
    db.commit()
    db.refresh(alert)

    dispatcher = risk_runtime.build_alert_dispatcher()
    notified, errors = dispatcher.notify(
        db,
        current_user.id,
        alert.message,
        alert.severity,
        alert.solution,
    )
    return AlertCreateOut(
        alert=AlertOut.model_validate(alert),
        notified=notified,
        notify_errors=errors,
    )


@router.patch("/{alert_id}", response_model=AlertOut)
def update_alert(
    alert_id: str,
    payload: AlertUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    alert = db.execute(
        select(Alert).where(Alert.id == alert_id, Alert.user_id == current_user.id)
    ).scalar_one_or_none()
    if not alert:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")

    if payload.read is not None:
        alert.read = payload.read
    if payload.dismissed is not None:
        alert.dismissed = payload.dismissed
    if payload.acknowledged is True:
        alert.acknowledged_at = utc_now()
        alert.acknowledged_note = (payload.acknowledged_note or "").strip() or None
        alert.read = True
    elif payload.acknowledged is False:
        alert.acknowledged_at = None
        alert.acknowledged_note = None
    elif payload.acknowledged_note is not None and alert.acknowledged_at is not None:
        alert.acknowledged_note = payload.acknowledged_note.strip() or None

    log_audit_event(
        db,
        action="alert.updated",
        user_id=current_user.id,
        entity_type="alert",
        entity_id=alert.id,
        details=payload.model_dump(exclude_none=True),
    )
    db.commit()
    db.refresh(alert)
    return alert
