import uuid
from sqlalchemy import Column, DateTime, String, UniqueConstraint

from apps.api.app.db.session import Base


class AlertDedupeState(Base):
    __tablename__ = "alert_dedupe_state"

    __table_args__ = (
        UniqueConstraint("user_id", "rule_type", name="uq_dedupe_user_rule"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    rule_type = Column(String, nullable=False)

    # last time the engine created an alert for this pair
    last_alert_at = Column(DateTime(timezone=True), nullable=False)
