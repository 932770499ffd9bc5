from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from apps.api.app.services.risk_rules import RiskRules
from apps.api.app.services.risk_stats import OpenPosition, StatsForRisk

DAILY_LOSS = "daily_loss"
MAX_DRAWDOWN = "max_drawdown"
REVENGE_TRADING = "revenge_trading"
MAX_RISK_PER_TRADE = "max_risk_per_trade"
MAX_EXPOSURE = "max_exposure"

RULE_TYPES = (DAILY_LOSS, MAX_DRAWDOWN, REVENGE_TRADING, MAX_RISK_PER_TRADE, MAX_EXPOSURE)

LEVEL_MILD = "mild"
LEVEL_MEDIUM = "medium"
LEVEL_HIGH = "high"

# "approaching" starts at 80% of the limit
APPROACH_THRESHOLD = 0.8
# breach tiers by ratio to the limit; the 1.0-1.1x band also reports medium
MEDIUM_RATIO = 1.1
HIGH_RATIO = 1.5
REVENGE_HIGH_EXTRA_TRADES = 2


ADVICE = {
    (DAILY_LOSS, LEVEL_MILD): "Reduce position size or avoid new entries until tomorrow. Check your rules.",
    (DAILY_LOSS, LEVEL_MEDIUM): "Daily loss limit exceeded. Stop trading for today, close any at-risk positions and review rules tomorrow.",
    (DAILY_LOSS, LEVEL_HIGH): "Daily loss far above limit. Do not open new trades; close at-risk positions and consider a one-day break to review strategy.",
    (MAX_DRAWDOWN, LEVEL_MILD): "Drawdown is approaching the maximum. Trade smaller until the equity curve recovers.",
    (MAX_DRAWDOWN, LEVEL_MEDIUM): "Drawdown limit exceeded. Do not open new trades until the account is back under the limit.",
    (MAX_DRAWDOWN, LEVEL_HIGH): "Drawdown far above limit. Suspend new entries and review the strategy before trading again.",
    (MAX_EXPOSURE, LEVEL_MILD): "Exposure is approaching the maximum. Reduce open position sizes or close part of the exposure.",
    (MAX_EXPOSURE, LEVEL_MEDIUM): "Exposure limit exceeded. Reduce open positions now and do not open new trades until back under the limit.",
    (MAX_EXPOSURE, LEVEL_HIGH): "Exposure far above limit. Reduce exposure immediately, close worst positions and suspend new entries.",
    (MAX_RISK_PER_TRADE, LEVEL_MILD): "Risk on a single trade is close to your maximum. Tighten the stop loss or reduce lot size on the next entry.",
    (MAX_RISK_PER_TRADE, LEVEL_MEDIUM): "Close or downsize the position to respect max risk per trade.",
    (MAX_RISK_PER_TRADE, LEVEL_HIGH): "Risk on this trade is far above your limit. Downsize or close it now.",
    (REVENGE_TRADING, LEVEL_MILD): "Near revenge-trading threshold. Take at least a 30-minute break before the next trade and respect position size.",
    (REVENGE_TRADING, LEVEL_MEDIUM): "Possible revenge trading: too many consecutive losses. Stop for today; do not try to recover with impulsive trades. Resume tomorrow with clear rules.",
    (REVENGE_TRADING, LEVEL_HIGH): "Clear revenge-trading pattern. Stop trading for today and tomorrow. Review plan and rules before resuming.",
}


@dataclass(frozen=True)
class RiskFinding:
    type: str
    level: str
    message: str
    advice: str
    severity: str

    def to_dict(self) -> dict:
        return asdict(self)


def build_finding(rule_type: str, level: str, message: str) -> RiskFinding:
    return RiskFinding(
        type=rule_type,
        level=level,
        message=message,
        advice=ADVICE[(rule_type, level)],
        severity="high" if level == LEVEL_HIGH else "medium",
    )


BREACH_TIERS = ((HIGH_RATIO, LEVEL_HIGH), (MEDIUM_RATIO, LEVEL_MEDIUM))


def _breach_level(ratio: float) -> str:
    for floor, level in BREACH_TIERS:
        if ratio >= floor:
            return level
    return LEVEL_MEDIUM


def _fmt_limit(limit: float) -> str:
    return f"{limit:g}"


def check_daily_loss(rules: RiskRules, stats: StatsForRisk) -> Optional[RiskFinding]:
    limit = rules.daily_loss_pct
    if stats.initial_balance <= 0 or not stats.daily_stats or limit <= 0:
        return None

    worst_day_pct = min(d.profit / stats.initial_balance * 100 for d in stats.daily_stats)
    if worst_day_pct <= -limit:
        level = _breach_level(abs(worst_day_pct) / limit)
        return build_finding(
            DAILY_LOSS,
            level,
            f"Daily loss: {worst_day_pct:.2f}% (limit {_fmt_limit(limit)}%).",
        )
    if worst_day_pct < -limit * APPROACH_THRESHOLD:
        return build_finding(
            DAILY_LOSS,
            LEVEL_MILD,
            f"Approaching daily loss limit: worst day {worst_day_pct:.2f}% (limit {_fmt_limit(limit)}%).",
        )
    return None


def check_drawdown(rules: RiskRules, stats: StatsForRisk) -> Optional[RiskFinding]:
    limit = rules.max_drawdown_pct
    dd = stats.highest_dd_pct
    if dd is None or limit <= 0:
        return None

    if dd >= limit:
        return build_finding(
            MAX_DRAWDOWN,
            _breach_level(dd / limit),
            f"Max drawdown: {dd:.2f}% (limit {_fmt_limit(limit)}%).",
        )
    if dd >= limit * APPROACH_THRESHOLD:
        return build_finding(
            MAX_DRAWDOWN,
            LEVEL_MILD,
            f"Drawdown approaching limit: {dd:.2f}% (limit {_fmt_limit(limit)}%).",
        )
    return None


def check_exposure(rules: RiskRules, current_exposure_pct: Optional[float]) -> Optional[RiskFinding]:
    limit = rules.max_exposure_pct
    if current_exposure_pct is None or limit <= 0:
        return None

    if current_exposure_pct >= limit:
        return build_finding(
            MAX_EXPOSURE,
            _breach_level(current_exposure_pct / limit),
            f"Current exposure: {current_exposure_pct:.2f}% (limit {_fmt_limit(limit)}%).",
        )
    if current_exposure_pct >= limit * APPROACH_THRESHOLD:
        return build_finding(
            MAX_EXPOSURE,
            LEVEL_MILD,
            f"Exposure approaching limit: {current_exposure_pct:.2f}% (limit {_fmt_limit(limit)}%).",
        )
    return None


def check_risk_per_trade(
    rules: RiskRules,
    open_positions: Iterable[OpenPosition],
) -> Optional[RiskFinding]:
    limit = rules.max_risk_per_trade_pct
    priced = [p for p in open_positions if p.risk_pct is not None]
    if limit <= 0 or not priced:
        return None

    # one finding per type: report the riskiest position
    worst = max(priced, key=lambda p: p.risk_pct)
    if worst.risk_pct > limit:
        return build_finding(
            MAX_RISK_PER_TRADE,
            _breach_level(worst.risk_pct / limit),
            f"Risk on trade {worst.symbol}: {worst.risk_pct:.2f}% (limit {_fmt_limit(limit)}%). "
            "Reduce stop loss distance or lot size.",
        )
    if worst.risk_pct >= limit * APPROACH_THRESHOLD:
        return build_finding(
            MAX_RISK_PER_TRADE,
            LEVEL_MILD,
            f"Risk on trade {worst.symbol} approaching limit: {worst.risk_pct:.2f}% (limit {_fmt_limit(limit)}%).",
        )
    return None


def check_revenge_trading(rules: RiskRules, stats: StatsForRisk) -> Optional[RiskFinding]:
    threshold = rules.revenge_threshold_trades
    count = stats.consecutive_losses_at_end
    if threshold <= 0:
        return None

    if count >= threshold:
        level = LEVEL_HIGH if count >= threshold + REVENGE_HIGH_EXTRA_TRADES else LEVEL_MEDIUM
        return build_finding(
            REVENGE_TRADING,
            level,
            f"{count} consecutive losses (threshold {threshold}). Possible revenge trading.",
        )
    if count == threshold - 1 and count > 0:
        return build_finding(
            REVENGE_TRADING,
            LEVEL_MILD,
            f"{count} consecutive losses: one more and you reach the threshold ({threshold}).",
        )
    return None


def get_risk_findings(
    rules: RiskRules,
    stats: StatsForRisk,
    current_exposure_pct: Optional[float] = None,
    open_positions: Iterable[OpenPosition] = (),
) -> list[RiskFinding]:
    candidates = [
        check_daily_loss(rules, stats),
        check_drawdown(rules, stats),
        check_exposure(rules, current_exposure_pct),
        check_risk_per_trade(rules, open_positions),
        check_revenge_trading(rules, stats),
    ]
    return [f for f in candidates if f is not None]
