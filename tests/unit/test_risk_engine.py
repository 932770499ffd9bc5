from dataclasses import replace
from datetime import date

import pytest

from apps.api.app.services.risk_engine import (
    DAILY_LOSS,
    MAX_DRAWDOWN,
    MAX_EXPOSURE,
    MAX_RISK_PER_TRADE,
    REVENGE_TRADING,
    check_daily_loss,
    check_drawdown,
    check_exposure,
    check_revenge_trading,
    build_finding,
    check_risk_per_trade,
    get_risk_findings,
)
from apps.api.app.services.risk_rules import DEFAULT_RISK_RULES
from apps.api.app.services.risk_stats import DailyStat, OpenPosition, StatsForRisk


def _stats(initial=10450.0, daily=(-450.0,), dd=None, losses=0):
    return StatsForRisk(
        initial_balance=initial,
        daily_stats=[DailyStat(date=date(2026, 3, i + 1), profit=p) for i, p in enumerate(daily)],
        highest_dd_pct=dd,
        consecutive_losses_at_end=losses,
    )


def _rules(**overrides):
    return replace(DEFAULT_RISK_RULES, **overrides)


def test_daily_loss_breach_far_above_limit_is_high():
    finding = check_daily_loss(_rules(daily_loss_pct=2), _stats())
    assert finding.type == DAILY_LOSS
    assert finding.level == "high"
    assert finding.severity == "high"
    assert "-4.31%" in finding.message
    assert "limit 2%" in finding.message


def test_daily_loss_between_80_percent_and_limit_is_mild():
    finding = check_daily_loss(_rules(daily_loss_pct=5), _stats())
    assert finding.level == "mild"
    assert finding.severity == "medium"
    assert finding.message.startswith("Approaching daily loss limit")


def test_daily_loss_just_over_limit_is_medium():
    finding = check_daily_loss(_rules(daily_loss_pct=4), _stats())
    assert finding.level == "medium"


def test_daily_loss_uses_worst_day_and_skips_bad_baseline():
    stats = _stats(initial=10000.0, daily=(-50.0, 300.0, -120.0))
    assert check_daily_loss(_rules(daily_loss_pct=1), stats).level == "medium"
    assert check_daily_loss(_rules(daily_loss_pct=1), _stats(initial=0.0)) is None
    assert check_daily_loss(_rules(daily_loss_pct=0), stats) is None
    assert check_daily_loss(_rules(daily_loss_pct=1), _stats(daily=())) is None


@pytest.mark.parametrize(
    "dd,level",
    [(11.0, None), (12.0, "mild"), (15.0, "medium"), (22.4, "medium"), (22.5, "high")],
)
def test_drawdown_levels(dd, level):
    finding = check_drawdown(_rules(max_drawdown_pct=15), _stats(dd=dd))
    assert (finding.level if finding else None) == level
    if finding:
        assert finding.type == MAX_DRAWDOWN


def test_drawdown_without_curve_is_skipped():
    assert check_drawdown(DEFAULT_RISK_RULES, _stats(dd=None)) is None


@pytest.mark.parametrize(
    "exposure,level",
    [(None, None), (11.9, None), (12.0, "mild"), (15.0, "medium"), (30.0, "high")],
)
def test_exposure_levels(exposure, level):
    finding = check_exposure(_rules(max_exposure_pct=15), exposure)
    assert (finding.level if finding else None) == level
    if finding:
        assert finding.type == MAX_EXPOSURE


def test_risk_per_trade_reports_riskiest_position():
    positions = [
        OpenPosition(symbol="GBPUSD", volume=0.1, open_price=1.25, stop_loss=1.245, risk_pct=0.5),
        OpenPosition(symbol="EURUSD", volume=1.0, open_price=1.1, stop_loss=1.095, risk_pct=5.0),
        OpenPosition(symbol="USDJPY", volume=1.0, open_price=150.0),
    ]
    finding = check_risk_per_trade(_rules(max_risk_per_trade_pct=1), positions)
    assert finding.type == MAX_RISK_PER_TRADE
    assert finding.level == "high"
    assert "EURUSD" in finding.message
    assert "5.00%" in finding.message


def test_risk_per_trade_at_limit_is_only_approaching():
    positions = [OpenPosition(symbol="EURUSD", volume=0.02, open_price=1.1, stop_loss=1.095, risk_pct=1.0)]
    finding = check_risk_per_trade(_rules(max_risk_per_trade_pct=1), positions)
    assert finding.level == "mild"

    below = [OpenPosition(symbol="EURUSD", volume=0.01, open_price=1.1, stop_loss=1.095, risk_pct=0.5)]
    assert check_risk_per_trade(_rules(max_risk_per_trade_pct=1), below) is None
    assert check_risk_per_trade(_rules(max_risk_per_trade_pct=1), []) is None


@pytest.mark.parametrize(
    "losses,level",
    [(0, None), (1, "mild"), (2, "medium"), (3, "medium"), (4, "high")],
)
def test_revenge_trading_levels(losses, level):
    finding = check_revenge_trading(_rules(revenge_threshold_trades=2), _stats(losses=losses))
    assert (finding.level if finding else None) == level
    if finding:
        assert finding.type == REVENGE_TRADING


def test_revenge_threshold_one_has_no_approach_band():
    assert check_revenge_trading(_rules(revenge_threshold_trades=1), _stats(losses=0)) is None
    assert check_revenge_trading(_rules(revenge_threshold_trades=0), _stats(losses=5)) is None


def test_findings_come_in_fixed_order_one_per_type():
    positions = [OpenPosition(symbol="EURUSD", volume=1.0, open_price=1.1, stop_loss=1.095, risk_pct=5.0)]
    findings = get_risk_findings(
        DEFAULT_RISK_RULES,
        _stats(dd=20.0, losses=3),
        current_exposure_pct=5.0,
        open_positions=positions,
    )
    assert [f.type for f in findings] == [DAILY_LOSS, MAX_DRAWDOWN, MAX_RISK_PER_TRADE, REVENGE_TRADING]
    assert all(f.advice for f in findings)


def test_quiet_account_has_no_findings():
    stats = _stats(initial=10000.0, daily=(25.0,), dd=1.0, losses=0)
    assert get_risk_findings(DEFAULT_RISK_RULES, stats) == []


@pytest.mark.parametrize("ratio", [1.0, 1.05, 1.1, 1.3, 1.49])
def test_breach_bands_below_high_ratio_report_medium(ratio):
    finding = check_exposure(_rules(max_exposure_pct=10), 10 * ratio)
    assert finding.level == "medium"
    assert finding == build_finding(MAX_EXPOSURE, "medium", finding.message)
