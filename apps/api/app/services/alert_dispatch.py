"""Turn risk findings into persisted alerts and outbound notifications.

Per (user_id, rule_type) the engine creates at most one alert inside the
dedupe window. The window is claimed in the database (``alert_dedupe_state``)
with a conditional update or a unique-guarded insert, so two concurrent runs
for the same trader cannot both insert.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from apps.api.app.core.config import settings
from apps.api.app.core.logging import mask_ref
from apps.api.app.core.time import as_utc, utc_now
from apps.api.app.models.alert import Alert
from apps.api.app.models.alert_dedupe import AlertDedupeState
from apps.api.app.models.user import User
from apps.api.app.services.audit import log_audit_event
from apps.api.app.services.risk_engine import RiskFinding

logger = logging.getLogger(__name__)

STATUS_SUPPRESSED = "suppressed"
STATUS_EMITTED = "emitted"


@dataclass
class DispatchOutcome:
    rule_type: str
    status: str
    alert_id: Optional[str] = None
    notified: bool = False
    notify_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def find_recent_alert(
    db: Session,
    user_id: str,
    rule_type: str,
    since: datetime,
) -> Optional[Alert]:
    return (
        db.execute(
            select(Alert)
            .where(
                Alert.user_id == user_id,
                Alert.rule_type == rule_type,
                Alert.alert_date >= since,
            )
            .order_by(Alert.alert_date.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def claim_dedupe_slot(
    db: Session,
    user_id: str,
    rule_type: str,
    now: datetime,
    window: timedelta,
) -> bool:
    """Atomically take the alert slot for (user_id, rule_type).

    True means the caller may create the alert; False means an alert for the
    pair already exists inside the window (or a concurrent writer won).
    Nothing is committed here: the claim lands in the same transaction as
    the alert, so a failed insert releases it again.
    """
    cutoff = now - window
    result = db.execute(
        update(AlertDedupeState)
        .where(
            AlertDedupeState.user_id == user_id,
            AlertDedupeState.rule_type == rule_type,
            AlertDedupeState.last_alert_at < cutoff,
        )
        .values(last_alert_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        return True

    state_exists = db.execute(
        select(AlertDedupeState.id).where(
            AlertDedupeState.user_id == user_id,
            AlertDedupeState.rule_type == rule_type,
        )
    ).first()
    if state_exists:
        return False

    # First claim for this pair. Alerts created before the state row existed
    # still count towards the window.
    recent = find_recent_alert(db, user_id, rule_type, cutoff)
    last_alert_at = as_utc(recent.alert_date) if recent else now

    try:
        with db.begin_nested():
            db.add(
                AlertDedupeState(
                    user_id=user_id,
                    rule_type=rule_type,
                    last_alert_at=last_alert_at,
                )
            )
            db.flush()
    except IntegrityError:
        # a concurrent writer seeded the pair first
        return False
    return recent is None


class AlertDispatcher:
    def __init__(self, notifier, dedupe_hours: Optional[int] = None):
        self.notifier = notifier
        self.dedupe_window = timedelta(
            hours=settings.RISK_DEDUPE_HOURS if dedupe_hours is None else dedupe_hours
        )

    def notify(
        self,
        db: Session,
        user_id: str,
        message: str,
        severity: str,
        solution: Optional[str] = None,
    ) -> tuple[bool, list[str]]:
        """Best-effort delivery to the user's chat and the operations channel."""
        errors: list[str] = []
        chat_id = db.execute(
            select(User.telegram_chat_id).where(User.id == user_id)
        ).scalar_one_or_none()

        user_result = self.notifier.send_alert(chat_id, message, severity, solution)
        if not user_result.ok:
            errors.append(f"user: {user_result.reason}")

        notified = user_result.ok
        if self.notifier.has_alert_channel:
            channel_result = self.notifier.send_channel_alert(
                f"{mask_ref(user_id)} {message}",
                severity,
                solution,
            )
            if channel_result.ok:
                notified = True
            else:
                errors.append(f"channel: {channel_result.reason}")

        if errors:
            logger.info(
                "Alert notification incomplete for user %s: %s",
                mask_ref(user_id),
                "; ".join(errors),
            )
        return notified, errors

    def _store_alert(
        self,
        db: Session,
        user_id: str,
        finding: RiskFinding,
        ts: datetime,
    ) -> Optional[Alert]:
        """Claim the slot and insert the alert in one transaction. None when suppressed."""
        if not claim_dedupe_slot(db, user_id, finding.type, ts, self.dedupe_window):
            # keeps a state row seeded from an older alert
            db.commit()
            return None

        alert = Alert(
            user_id=user_id,
            message=finding.message,
            severity=finding.severity,
            solution=finding.advice,
            rule_type=finding.type,
            alert_date=ts,
        )
        db.add(alert)
        db.flush()
        log_audit_event(
            db,
            action="risk.alert.created",
            user_id=user_id,
            entity_type="alert",
            entity_id=alert.id,
            details={"rule_type": finding.type, "level": finding.level},
        )
        db.commit()
        return alert

    def dispatch(
        self,
        db: Session,
        user_id: str,
        findings: Iterable[RiskFinding],
        now: Optional[datetime] = None,
    ) -> list[DispatchOutcome]:
        outcomes = []
        for finding in findings:
            ts = now or utc_now()
            try:
                alert = self._store_alert(db, user_id, finding, ts)
            except SQLAlchemyError:
                # releases the claim together with the half-written alert
                db.rollback()
                raise
            if alert is None:
                logger.debug("Suppressed %s alert for user %s", finding.type, mask_ref(user_id))
                outcomes.append(DispatchOutcome(rule_type=finding.type, status=STATUS_SUPPRESSED))
                continue

            # the alert is the durable record; a failed send does not undo it
            notified, errors = self.notify(
                db,
                user_id,
                f"[{finding.level.upper()}] {finding.message}",
                finding.severity,
                finding.advice,
            )
            outcomes.append(
                DispatchOutcome(
                    rule_type=finding.type,
                    status=STATUS_EMITTED,
                    alert_id=alert.id,
                    notified=notified,
                    notify_errors=errors,
                )
            )
        return outcomes
