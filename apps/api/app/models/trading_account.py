import uuid

from sqlalchemy import Column, DateTime, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from apps.api.app.db.session import Base


class TradingAccount(Base):
    __tablename__ = "trading_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", "account_number", name="uq_user_platform_account"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=True)
    platform = Column(String, nullable=False)  # MT4 | MT5
    account_number = Column(String, nullable=False)
    investor_password_encrypted = Column(Text, nullable=True)

    # id on the account data provider; risk checks skip accounts without one
    broker_account_id = Column(String, index=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
