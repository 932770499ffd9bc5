import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text

from apps.api.app.core.time import utc_now
from apps.api.app.db.session import Base


class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_user_rule_date", "user_id", "rule_type", "alert_date"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, index=True, nullable=False)

    message = Column(Text, nullable=False)
    severity = Column(String, nullable=False, default="medium")  # medium | high
    solution = Column(Text, nullable=True)

    # daily_loss | max_drawdown | revenge_trading | max_risk_per_trade | max_exposure; None for manual alerts
    rule_type = Column(String, nullable=True)

    alert_date = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    read = Column(Boolean, nullable=False, default=False)
    dismissed = Column(Boolean, nullable=False, default=False)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    acknowledged_note = Column(Text, nullable=True)
