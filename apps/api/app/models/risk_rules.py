from sqlalchemy import Column, DateTime, Float, Integer, String
from sqlalchemy.sql import func

from apps.api.app.db.session import Base


class UserRiskRules(Base):
    __tablename__ = "user_risk_rules"

    user_id = Column(String, primary_key=True, index=True)

    # percentages, e.g. 2.0 == 2%
    daily_loss_pct = Column(Float, nullable=True)
    max_risk_per_trade_pct = Column(Float, nullable=True)
    max_exposure_pct = Column(Float, nullable=True)
    max_drawdown_pct = Column(Float, nullable=True)
    revenge_threshold_trades = Column(Integer, nullable=True)

    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now(), nullable=False)
