from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select

from apps.api.app.db.session import SessionLocal
from apps.api.app.models.alert import Alert
from apps.api.app.models.audit_log import AuditLog
from apps.api.app.models.trading_account import TradingAccount
from apps.api.app.services.alert_dispatch import AlertDispatcher
from apps.api.app.services.risk_rules import DEFAULT_RISK_RULES
from apps.api.app.services.risk_stats import ClosedOrder, OpenPosition
from apps.worker.app.engine.risk_runtime import (
    evaluate_snapshot,
    list_linked_accounts,
    run_live_status,
    run_risk_check_all,
    run_risk_check_dry_run,
    run_risk_check_for_account,
)
from tests.fakes import FakeGateway, FakeNotifier, make_snapshot

DAY = datetime(2026, 3, 2, tzinfo=timezone.utc)


def _losing_snapshot(account_id="acct-loss-1"):
    return make_snapshot(
        account_id=account_id,
        balance=10000.0,
        orders=[
            ClosedOrder(close_time=DAY.replace(hour=9), profit=-200.0),
            ClosedOrder(close_time=DAY.replace(hour=11), profit=-150.0),
            ClosedOrder(close_time=DAY.replace(hour=15), profit=-100.0),
        ],
        positions=[OpenPosition(symbol="EURUSD", volume=1.0, open_price=1.1, stop_loss=1.095)],
    )


class CrashingDispatcher:
    def dispatch(self, db, user_id, findings, now=None):
        if findings:
            raise RuntimeError("dispatcher down")
        return []


def test_evaluate_snapshot_prices_positions_against_equity():
    evaluation = evaluate_snapshot(DEFAULT_RISK_RULES, _losing_snapshot())
    assert evaluation.stats.initial_balance == pytest.approx(10450.0)
    assert evaluation.open_positions[0].risk_pct == pytest.approx(5.0)
    assert evaluation.current_exposure_pct == pytest.approx(5.0)
    assert [(f.type, f.level) for f in evaluation.findings] == [
        ("daily_loss", "high"),
        ("max_risk_per_trade", "high"),
        ("revenge_trading", "medium"),
    ]


def test_risk_check_stores_alerts_and_returns_findings(db):
    notifier = FakeNotifier()
    result = run_risk_check_for_account(
        db,
        user_id="user-1",
        account_id="acct-loss-1",
        gateway=FakeGateway(default=_losing_snapshot()),
        dispatcher=AlertDispatcher(notifier, dedupe_hours=12),
    )
    assert result.ok is True
    assert len(result.findings) == 3
    assert len(result.dispatched) == 3
    assert result.to_dict()["findings"][0]["type"] == "daily_loss"
    assert len(db.execute(select(Alert)).scalars().all()) == 3


def test_risk_check_summary_failure_returns_error(db):
    result = run_risk_check_for_account(
        db,
        user_id="user-1",
        account_id="acct-1",
        gateway=FakeGateway(default=make_snapshot(summary_ok=False)),
        dispatcher=AlertDispatcher(FakeNotifier()),
    )
    assert result.ok is False
    assert result.findings == []
    assert result.error.startswith("AccountSummary failed")


def test_gateway_crash_becomes_an_error(db):
    result = run_risk_check_for_account(
        db,
        user_id="user-1",
        account_id="acct-1",
        gateway=FakeGateway(fail_for={"acct-1"}),
        dispatcher=AlertDispatcher(FakeNotifier()),
    )
    assert result.ok is False
    assert result.error == "Failed to fetch account: gateway exploded"


def test_dry_run_writes_nothing(db):
    result = run_risk_check_dry_run(
        db,
        user_id="user-1",
        account_id="acct-loss-1",
        gateway=FakeGateway(default=_losing_snapshot()),
        include_raw=True,
    )
    body = result.to_dict()

    assert body["ok"] is True
    assert body["account_ref"] == "acct-los..."
    assert body["rules"] == DEFAULT_RISK_RULES.to_dict()
    assert body["stats"]["consecutive_losses_at_end"] == 3
    assert body["raw"]["account_summary"] == {"balance": 10000.0}
    assert len(body["findings"]) == 3
    assert "Findings (3):" in body["human_summary"]
    assert [e["title"] for e in body["human_events"]][:2] == ["Connection (API)", "Account (balance / equity)"]
    assert db.execute(select(Alert)).scalars().all() == []


def test_dry_run_failure_keeps_connection_detail(db):
    result = run_risk_check_dry_run(
        db,
        user_id="user-1",
        account_id="acct-1",
        gateway=FakeGateway(default=make_snapshot(summary_ok=False)),
    )
    body = result.to_dict()
    assert body["ok"] is False
    assert body["connection"]["account_summary"]["status"] == 500
    assert body["human_summary"].startswith("Error: AccountSummary failed")
    assert len(body["human_events"]) == 1


def test_live_status_reports_today_loss_and_exposure():
    snapshot = make_snapshot(
        balance=9800.0,
        orders=[
            ClosedOrder(close_time=DAY.replace(day=1), profit=50.0),
            ClosedOrder(close_time=DAY, profit=-250.0),
        ],
    )
    live = run_live_status(account_id="acct-1", gateway=FakeGateway(default=snapshot), today=DAY.date())
    assert live.as_of == date(2026, 3, 2)
    assert live.daily_loss_pct == pytest.approx(250 / 10000 * 100)
    assert live.current_exposure_pct is None

    failed = run_live_status(
        account_id="acct-1",
        gateway=FakeGateway(default=make_snapshot(summary_ok=False)),
        today=DAY.date(),
    )
    assert failed.daily_loss_pct is None


def _seed_accounts(db):
    db.add_all(
        [
            TradingAccount(user_id="user-a", platform="MT5", account_number="1", broker_account_id="acct-ok-0001"),
            TradingAccount(user_id="user-b", platform="MT5", account_number="2", broker_account_id="acct-boom-002"),
            TradingAccount(user_id="user-c", platform="MT4", account_number="3", broker_account_id="acct-loss-003"),
            TradingAccount(user_id="user-d", platform="MT4", account_number="4"),
        ]
    )
    db.commit()


def test_linked_accounts_skip_unlinked(db):
    _seed_accounts(db)
    linked = list_linked_accounts(db)
    assert sorted(account for _, account in linked) == ["acct-boom-002", "acct-loss-003", "acct-ok-0001"]


def test_sweep_isolates_failing_accounts(db):
    _seed_accounts(db)
    gateway = FakeGateway(
        snapshots={"acct-loss-003": _losing_snapshot("acct-loss-003")},
        fail_for={"acct-boom-002"},
    )

    result = run_risk_check_all(
        gateway=gateway,
        dispatcher=CrashingDispatcher(),
        session_factory=SessionLocal,
        max_workers=3,
    )

    assert result.ok is True
    assert result.accounts_checked == 3
    by_account = {r.account_ref: r for r in result.results}
    assert by_account["acct-ok-..."].ok is True
    assert by_account["acct-boo..."].error == "Failed to fetch account: gateway exploded"
    assert by_account["acct-los..."].ok is False
    assert by_account["acct-los..."].error == "RuntimeError: dispatcher down"
    assert sorted(gateway.calls) == ["acct-boom-002", "acct-loss-003", "acct-ok-0001"]

    db.expire_all()
    audit = db.execute(select(AuditLog).where(AuditLog.action == "risk.sweep.completed")).scalar_one()
    assert '"failed": 2' in audit.details


def test_sweep_with_no_accounts(db):
    result = run_risk_check_all(
        gateway=FakeGateway(),
        dispatcher=CrashingDispatcher(),
        session_factory=SessionLocal,
    )
    assert result.accounts_checked == 0
    assert result.results == []
