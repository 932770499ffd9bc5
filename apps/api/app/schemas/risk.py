from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, Field


class RiskRulesOut(BaseModel):
    daily_loss_pct: float
    max_risk_per_trade_pct: float
    max_exposure_pct: float
    max_drawdown_pct: float
    revenge_threshold_trades: int
    source: str = "default"  # default | custom


class RiskRulesUpdate(BaseModel):
    daily_loss_pct: Optional[float] = Field(default=None, ge=0)
    max_risk_per_trade_pct: Optional[float] = Field(default=None, ge=0)
    max_exposure_pct: Optional[float] = Field(default=None, ge=0)
    max_drawdown_pct: Optional[float] = Field(default=None, ge=0)
    revenge_threshold_trades: Optional[int] = Field(default=None, ge=0)


class RiskFindingOut(BaseModel):
    type: str
    level: str
    message: str
    advice: str
    severity: str


class CheckRiskRequest(BaseModel):
    account_id: Optional[str] = None


class CheckRiskOut(BaseModel):
    ok: bool
    error: Optional[str] = None
    findings: list[RiskFindingOut] = []


class SweepAccountOut(BaseModel):
    user_ref: str
    account_ref: str
    ok: bool
    error: Optional[str] = None
    findings_count: int


class SweepOut(BaseModel):
    ok: bool
    accounts_checked: int
    results: list[SweepAccountOut] = []


class LiveRiskOut(BaseModel):
    as_of: date
    daily_loss_pct: Optional[float] = None
    current_exposure_pct: Optional[float] = None


class RiskStatusOut(BaseModel):
    rules: RiskRulesOut
    live: Optional[LiveRiskOut] = None


class ConnectionCheckItem(BaseModel):
    id: str
    name: str
    status: str  # ok | warn | fail
    message: str
    detail: Optional[str] = None


class ConnectionCheckOut(BaseModel):
    ok: bool
    checks: list[ConnectionCheckItem]


class DryRunOut(BaseModel):
    ok: bool
    error: Optional[str] = None
    account_ref: str
    connection: dict[str, Any]
    balance: float
    equity: float
    currency: Optional[str] = None
    closed_orders_count: int
    open_positions_count: int
    rules: Optional[dict[str, Any]] = None
    stats: Optional[dict[str, Any]] = None
    current_exposure_pct: Optional[float] = None
    open_positions: list[dict[str, Any]] = []
    findings: list[RiskFindingOut] = []
    raw: Optional[dict[str, Any]] = None
    human_summary: str
    human_events: list[dict[str, Any]] = []
