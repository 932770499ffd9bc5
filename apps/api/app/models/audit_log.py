import uuid

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from apps.api.app.db.session import Base


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, index=True, nullable=True)
    action = Column(String, index=True, nullable=False)  # e.g. risk.alert.created
    entity_type = Column(String, nullable=True)
    entity_id = Column(String, nullable=True)
    details = Column(Text, nullable=True)  # json
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
