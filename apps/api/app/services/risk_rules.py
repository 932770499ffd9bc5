from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from sqlalchemy import select
from sqlalchemy.orm import Session

from apps.api.app.models.risk_rules import UserRiskRules


@dataclass(frozen=True)
class RiskRules:
    daily_loss_pct: float
    max_risk_per_trade_pct: float
    max_exposure_pct: float
    max_drawdown_pct: float
    revenge_threshold_trades: int

    def to_dict(self) -> dict:
        return asdict(self)


# Single source of defaults for every entry point (on-demand check, sweep,
# dry run, rules read, rules status).
DEFAULT_RISK_RULES = RiskRules(
    daily_loss_pct=2.0,
    max_risk_per_trade_pct=1.0,
    max_exposure_pct=15.0,
    max_drawdown_pct=15.0,
    revenge_threshold_trades=2,
)

RULE_FIELDS = tuple(DEFAULT_RISK_RULES.to_dict().keys())


def _get_row(db: Session, user_id: str) -> UserRiskRules | None:
    return (
        db.execute(select(UserRiskRules).where(UserRiskRules.user_id == user_id))
        .scalar_one_or_none()
    )


def rules_from_row(row: UserRiskRules | None) -> RiskRules:
    if row is None:
        return DEFAULT_RISK_RULES
    values = {}
    for field in RULE_FIELDS:
        value = getattr(row, field)
        if value is None:
            continue
        values[field] = int(value) if field == "revenge_threshold_trades" else float(value)
    return replace(DEFAULT_RISK_RULES, **values)


def resolve_risk_rules(db: Session, user_id: str) -> RiskRules:
    return rules_from_row(_get_row(db, user_id))


def has_custom_rules(db: Session, user_id: str) -> bool:
    return _get_row(db, user_id) is not None


def update_risk_rules(db: Session, user_id: str, updates: dict) -> RiskRules:
    """Upsert the trader's rules row.

    Only known fields with non-negative values are applied; anything else is
    ignored. Returns the effective rules after the update (not committed).
    """
    clean = {}
    for field, value in updates.items():
        if field not in RULE_FIELDS or value is None:
            continue
        if value < 0:
            raise ValueError(f"{field} must be >= 0")
        clean[field] = value

    row = _get_row(db, user_id)
    if row is None:
        row = UserRiskRules(user_id=user_id, **DEFAULT_RISK_RULES.to_dict())
        db.add(row)
    for field, value in clean.items():
        setattr(row, field, value)
    db.flush()
    return rules_from_row(row)
