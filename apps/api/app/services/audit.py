import json
from typing import Any, Optional

from sqlalchemy.orm import Session

from apps.api.app.models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    action: str,
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
):
    event = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        # datetimes and Decimals in details are stored as text
        details=json.dumps(details, default=str, sort_keys=True) if details else None,
    )
    db.add(event)
    db.flush()
    return event
