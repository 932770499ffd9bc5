from datetime import date, datetime, timedelta, timezone

import pytest

from apps.api.app.services.risk_stats import (
    ClosedOrder,
    OpenPosition,
    build_open_positions_for_risk,
    build_stats_for_risk,
    compute_current_exposure,
    position_risk_pct,
)


def _at(day, hour=12):
    return datetime(2026, 3, day, hour, tzinfo=timezone.utc)


def test_no_orders_gives_empty_stats():
    stats = build_stats_for_risk(5000.0, [])
    assert stats.initial_balance == 5000.0
    assert stats.daily_stats == []
    assert stats.highest_dd_pct is None
    assert stats.consecutive_losses_at_end == 0


def test_initial_balance_is_reconstructed_from_profits():
    orders = [
        ClosedOrder(close_time=_at(2, 9), profit=-200.0),
        ClosedOrder(close_time=_at(2, 11), profit=-150.0),
        ClosedOrder(close_time=_at(2, 15), profit=-100.0),
    ]
    stats = build_stats_for_risk(10000.0, orders)
    assert stats.initial_balance == pytest.approx(10450.0)
    assert stats.initial_balance + sum(o.profit for o in orders) == pytest.approx(10000.0)
    assert [(d.date, d.profit) for d in stats.daily_stats] == [(date(2026, 3, 2), -450.0)]
    assert stats.highest_dd_pct == pytest.approx(450 / 10450 * 100)
    assert stats.consecutive_losses_at_end == 3


def test_orders_are_sorted_before_building_the_curve():
    orders = [
        ClosedOrder(close_time=_at(3), profit=-50.0),
        ClosedOrder(close_time=_at(1), profit=100.0),
        ClosedOrder(close_time=_at(2), profit=-30.0),
    ]
    stats = build_stats_for_risk(1020.0, orders)
    assert [d.date.day for d in stats.daily_stats] == [1, 2, 3]
    # peak 1100 after day 1, trough 1020 at the end
    assert stats.highest_dd_pct == pytest.approx(80 / 1100 * 100)
    assert stats.consecutive_losses_at_end == 2


def test_winning_last_trade_resets_streak_and_zero_profit_breaks_it():
    stats = build_stats_for_risk(
        1000.0,
        [
            ClosedOrder(close_time=_at(1, 9), profit=-10.0),
            ClosedOrder(close_time=_at(1, 10), profit=0.0),
        ],
    )
    assert stats.consecutive_losses_at_end == 0


def test_only_gains_has_no_drawdown():
    stats = build_stats_for_risk(
        1200.0,
        [ClosedOrder(close_time=_at(1), profit=100.0), ClosedOrder(close_time=_at(2), profit=100.0)],
    )
    assert stats.highest_dd_pct is None


def test_non_numeric_profits_are_ignored():
    stats = build_stats_for_risk(
        1000.0,
        [
            ClosedOrder(close_time=_at(1), profit=float("nan")),
            ClosedOrder(close_time=_at(1), profit=-25.0),
        ],
    )
    assert stats.initial_balance == pytest.approx(1025.0)
    assert stats.consecutive_losses_at_end == 1


def test_non_positive_starting_balance_is_reported_raw():
    stats = build_stats_for_risk(-100.0, [ClosedOrder(close_time=_at(1), profit=50.0)])
    assert stats.initial_balance == pytest.approx(-150.0)
    assert stats.highest_dd_pct is None


def test_position_risk_uses_stop_distance_and_standard_lot():
    position = OpenPosition(symbol="EURUSD", volume=1.0, open_price=1.1, stop_loss=1.095)
    assert position_risk_pct(position, 10000.0) == pytest.approx(5.0)


@pytest.mark.parametrize("stop_loss", [None, 1.1])
def test_position_without_usable_stop_has_no_risk(stop_loss):
    position = OpenPosition(symbol="EURUSD", volume=1.0, open_price=1.1, stop_loss=stop_loss)
    assert position_risk_pct(position, 10000.0) is None


def test_open_positions_skip_invalid_rows_and_non_positive_equity():
    positions = [
        OpenPosition(symbol="EURUSD", volume=0.5, open_price=1.1, stop_loss=1.09),
        OpenPosition(symbol="GBPUSD", volume=0.0, open_price=1.25, stop_loss=1.24),
        OpenPosition(symbol="", volume=1.0, open_price=1.25, stop_loss=1.24),
        OpenPosition(symbol="USDJPY", volume=1.0, open_price=150.0),
    ]
    assert build_open_positions_for_risk(positions, 0.0) == []

    priced = build_open_positions_for_risk(positions, 10000.0)
    assert [p.symbol for p in priced] == ["EURUSD", "USDJPY"]
    assert priced[0].risk_pct == pytest.approx(5.0)
    assert priced[1].risk_pct is None


def test_exposure_sums_priced_positions_only():
    positions = build_open_positions_for_risk(
        [
            OpenPosition(symbol="EURUSD", volume=0.2, open_price=1.1, stop_loss=1.095),
            OpenPosition(symbol="EURUSD", volume=0.1, open_price=1.1, stop_loss=1.105, side="sell"),
            OpenPosition(symbol="XAUUSD", volume=1.0, open_price=2300.0),
        ],
        10000.0,
    )
    assert compute_current_exposure(positions) == pytest.approx(1.0 + 0.5)
    assert compute_current_exposure([]) is None
    assert compute_current_exposure(positions[2:]) is None


def test_days_are_bucketed_by_utc_date():
    new_york = timezone(timedelta(hours=-5))
    stats = build_stats_for_risk(
        900.0,
        [
            ClosedOrder(close_time=datetime(2024, 1, 1, 23, 30, tzinfo=new_york), profit=-60.0),
            ClosedOrder(close_time=datetime(2024, 1, 2, 1, 0, tzinfo=timezone.utc), profit=-40.0),
        ],
    )
    assert [(d.date, d.profit) for d in stats.daily_stats] == [(date(2024, 1, 2), -100.0)]
