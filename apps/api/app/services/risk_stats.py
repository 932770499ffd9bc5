"""Statistics and exposure derived from a trading account's raw state.

Everything here is pure: closed orders and open positions come in already
normalized (see apps.worker.app.engine.metatrader_client), numbers go out.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, replace
from datetime import date, datetime, timezone
from typing import Iterable, Optional

# One standard lot. Instrument-specific contract sizes and currency
# conversion are not modelled.
CONTRACT_SIZE = 100_000


@dataclass(frozen=True)
class ClosedOrder:
    close_time: datetime
    profit: float


@dataclass(frozen=True)
class OpenPosition:
    symbol: str
    volume: float
    open_price: float
    stop_loss: Optional[float] = None
    side: str = "buy"
    risk_pct: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DailyStat:
    date: date
    profit: float


@dataclass
class StatsForRisk:
    initial_balance: float
    daily_stats: list[DailyStat]
    highest_dd_pct: Optional[float]
    consecutive_losses_at_end: int

    def to_dict(self) -> dict:
        return {
            "initial_balance": self.initial_balance,
            "daily_stats": [
                {"date": d.date.isoformat(), "profit": d.profit}
                for d in self.daily_stats
            ],
            "highest_dd_pct": self.highest_dd_pct,
            "consecutive_losses_at_end": self.consecutive_losses_at_end,
        }


def _is_number(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _utc_day(value: datetime) -> date:
    # naive close times are taken as UTC
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(timezone.utc).date()


def _valid_orders(orders: Iterable[ClosedOrder]) -> list[ClosedOrder]:
    return [
        o for o in orders
        if isinstance(o.close_time, datetime) and _is_number(o.profit)
    ]


def build_stats_for_risk(balance: float, orders: Iterable[ClosedOrder]) -> StatsForRisk:
    valid = _valid_orders(orders)
    if not valid:
        return StatsForRisk(
            initial_balance=balance,
            daily_stats=[],
            highest_dd_pct=None,
            consecutive_losses_at_end=0,
        )

    total_profit = sum(o.profit for o in valid)
    initial_balance = balance - total_profit
    ordered = sorted(valid, key=lambda o: o.close_time)

    by_day: dict[date, float] = {}
    running = initial_balance
    curve = [initial_balance]
    for o in ordered:
        running += o.profit
        curve.append(running)
        day = _utc_day(o.close_time)
        by_day[day] = by_day.get(day, 0.0) + o.profit

    peak = curve[0]
    max_dd_pct = 0.0
    for value in curve[1:]:
        if value > peak:
            peak = value
        # a non-positive peak (withdrawals larger than the account) gives no usable percentage
        dd_pct = (peak - value) / peak * 100 if peak > 0 else 0.0
        if dd_pct > max_dd_pct:
            max_dd_pct = dd_pct

    consecutive = 0
    for o in reversed(ordered):
        if o.profit < 0:
            consecutive += 1
        else:
            break

    return StatsForRisk(
        initial_balance=initial_balance,
        daily_stats=[DailyStat(date=d, profit=p) for d, p in by_day.items()],
        highest_dd_pct=max_dd_pct if max_dd_pct > 0 else None,
        consecutive_losses_at_end=consecutive,
    )


def position_risk_pct(position: OpenPosition, equity: float) -> Optional[float]:
    """Money lost if the stop loss is hit, as % of equity. None without a usable stop."""
    sl = position.stop_loss
    if sl is None or not _is_number(sl) or sl == position.open_price:
        return None
    risk_amount = abs(position.open_price - sl) * position.volume * CONTRACT_SIZE
    return risk_amount / equity * 100


def build_open_positions_for_risk(
    positions: Iterable[OpenPosition],
    equity: float,
) -> list[OpenPosition]:
    if not _is_number(equity) or equity <= 0:
        return []

    out = []
    for p in positions:
        if not p.symbol or not _is_number(p.volume) or not _is_number(p.open_price):
            continue
        if p.volume <= 0 or p.open_price <= 0:
            continue
        out.append(replace(p, risk_pct=position_risk_pct(p, equity)))
    return out


def compute_current_exposure(positions: Iterable[OpenPosition]) -> Optional[float]:
    # positions without a stop loss are invisible here
    total = sum(p.risk_pct for p in positions if p.risk_pct is not None)
    return total if total > 0 else None
