import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from apps.api.app.core.config import settings
from apps.api.app.core.logging import mask_ref
from apps.api.app.core.time import today_utc
from apps.api.app.db.session import SessionLocal
from apps.api.app.models.trading_account import TradingAccount
from apps.api.app.services.alert_dispatch import STATUS_EMITTED, AlertDispatcher, DispatchOutcome
from apps.api.app.services.audit import log_audit_event
from apps.api.app.services.risk_engine import RiskFinding, get_risk_findings
from apps.api.app.services.risk_rules import RiskRules, resolve_risk_rules
from apps.api.app.services.risk_stats import (
    OpenPosition,
    StatsForRisk,
    build_open_positions_for_risk,
    build_stats_for_risk,
    compute_current_exposure,
)
from apps.worker.app.engine.metatrader_client import AccountSnapshot, build_metatrader_client
from apps.worker.app.engine.notifier import build_notifier

logger = logging.getLogger(__name__)


@dataclass
class RiskEvaluation:
    rules: RiskRules
    stats: StatsForRisk
    open_positions: list[OpenPosition]
    current_exposure_pct: Optional[float]
    findings: list[RiskFinding]


@dataclass
class RiskCheckResult:
    ok: bool
    findings: list[RiskFinding] = field(default_factory=list)
    error: Optional[str] = None
    dispatched: list[DispatchOutcome] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "error": self.error,
            "findings": [f.to_dict() for f in self.findings],
        }


@dataclass
class DryRunResult:
    ok: bool
    account_ref: str
    connection: dict[str, dict]
    error: Optional[str] = None
    balance: float = 0.0
    equity: float = 0.0
    currency: Optional[str] = None
    closed_orders_count: int = 0
    open_positions_count: int = 0
    rules: Optional[RiskRules] = None
    stats: Optional[StatsForRisk] = None
    current_exposure_pct: Optional[float] = None
    open_positions: list[OpenPosition] = field(default_factory=list)
    findings: list[RiskFinding] = field(default_factory=list)
    raw: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "error": self.error,
            "account_ref": self.account_ref,
            "connection": self.connection,
            "balance": self.balance,
            "equity": self.equity,
            "currency": self.currency,
            "closed_orders_count": self.closed_orders_count,
            "open_positions_count": self.open_positions_count,
            "rules": self.rules.to_dict() if self.rules else None,
            "stats": self.stats.to_dict() if self.stats else None,
            "current_exposure_pct": self.current_exposure_pct,
            "open_positions": [p.to_dict() for p in self.open_positions],
            "findings": [f.to_dict() for f in self.findings],
            "raw": self.raw,
            "human_summary": build_human_summary(self),
            "human_events": build_human_events(self),
        }


@dataclass
class SweepAccountResult:
    user_ref: str
    account_ref: str
    ok: bool
    findings_count: int = 0
    error: Optional[str] = None


@dataclass
class SweepResult:
    ok: bool
    accounts_checked: int
    results: list[SweepAccountResult] = field(default_factory=list)


def evaluate_snapshot(rules: RiskRules, snapshot: AccountSnapshot) -> RiskEvaluation:
    stats = build_stats_for_risk(snapshot.balance, snapshot.orders)
    equity = snapshot.equity if snapshot.equity > 0 else snapshot.balance
    positions = build_open_positions_for_risk(snapshot.positions, equity)
    exposure = compute_current_exposure(positions)
    findings = get_risk_findings(
        rules,
        stats,
        current_exposure_pct=exposure,
        open_positions=positions,
    )
    return RiskEvaluation(
        rules=rules,
        stats=stats,
        open_positions=positions,
        current_exposure_pct=exposure,
        findings=findings,
    )


def _fetch_snapshot(gateway, account_id: str) -> tuple[Optional[AccountSnapshot], Optional[str]]:
    try:
        snapshot = gateway.fetch_account_snapshot(account_id)
    except Exception as exc:
        # the gateway reports per-call failures itself; anything escaping is a bug upstream
        logger.exception("Account %s: snapshot fetch crashed", mask_ref(account_id))
        return None, f"Failed to fetch account: {exc}"
    if not snapshot.ok:
        return snapshot, snapshot.error
    return snapshot, None


def run_risk_check_for_account(
    db: Session,
    *,
    user_id: str,
    account_id: str,
    gateway,
    dispatcher: AlertDispatcher,
) -> RiskCheckResult:
    snapshot, error = _fetch_snapshot(gateway, account_id)
    if error:
        return RiskCheckResult(ok=False, error=error)

    try:
        evaluation = evaluate_snapshot(resolve_risk_rules(db, user_id), snapshot)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Account %s: cannot load rules: %s", mask_ref(account_id), exc)
        return RiskCheckResult(ok=False, error="Failed to load risk rules")

    try:
        dispatched = dispatcher.dispatch(db, user_id, evaluation.findings)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Account %s: cannot store alerts: %s", mask_ref(account_id), exc)
        return RiskCheckResult(
            ok=False,
            findings=evaluation.findings,
            error="Failed to store alerts",
        )

    emitted = sum(1 for d in dispatched if d.status == STATUS_EMITTED)
    logger.info(
        "Account %s: %d findings, %d new alerts",
        mask_ref(account_id),
        len(evaluation.findings),
        emitted,
    )
    return RiskCheckResult(ok=True, findings=evaluation.findings, dispatched=dispatched)


def run_risk_check_dry_run(
    db: Session,
    *,
    user_id: str,
    account_id: str,
    gateway,
    include_raw: bool = False,
) -> DryRunResult:
    """Same fetch and evaluation as the live path, without alerts or notifications."""
    snapshot, error = _fetch_snapshot(gateway, account_id)
    if snapshot is None:
        return DryRunResult(
            ok=False,
            account_ref=mask_ref(account_id),
            connection={},
            error=error,
        )

    result = DryRunResult(
        ok=snapshot.ok,
        error=error,
        account_ref=mask_ref(account_id),
        connection=snapshot.connection,
        balance=snapshot.balance,
        equity=snapshot.equity,
        currency=snapshot.currency,
        closed_orders_count=len(snapshot.orders),
        open_positions_count=len(snapshot.positions),
        raw=snapshot.raw_payloads() if include_raw else None,
    )
    if not snapshot.ok:
        return result

    try:
        rules = resolve_risk_rules(db, user_id)
    except SQLAlchemyError as exc:
        db.rollback()
        result.ok = False
        result.error = f"Failed to load risk rules: {exc.__class__.__name__}"
        return result

    evaluation = evaluate_snapshot(rules, snapshot)
    result.rules = rules
    result.stats = evaluation.stats
    result.open_positions = evaluation.open_positions
    result.current_exposure_pct = evaluation.current_exposure_pct
    result.findings = evaluation.findings
    return result


def _connection_line(connection: dict[str, dict]) -> str:
    parts = []
    for name, status in connection.items():
        label = "OK" if status.get("ok") else "FAIL"
        extra = " ".join(str(v) for v in (status.get("status"), status.get("error")) if v)
        parts.append(f"{status.get('endpoint', name)}: {label} {extra}".strip())
    return " | ".join(parts)


def build_human_summary(result: DryRunResult) -> str:
    if not result.ok:
        return f"Error: {result.error}. Connection: {_connection_line(result.connection) or 'n/a'}."

    lines = [
        f"Account {result.account_ref} | Balance: {result.balance} | Equity: {result.equity}",
        f"Closed orders: {result.closed_orders_count} | Open positions: {result.open_positions_count}",
    ]
    if result.current_exposure_pct is not None:
        lines.append(f"Current exposure: {result.current_exposure_pct:.2f}%")
    if result.rules:
        r = result.rules
        lines.append(
            f"Rules: daily_loss {r.daily_loss_pct}%, max_risk/trade {r.max_risk_per_trade_pct}%, "
            f"max_exposure {r.max_exposure_pct}%, max_drawdown {r.max_drawdown_pct}%, "
            f"revenge_threshold {r.revenge_threshold_trades}"
        )
    if result.stats:
        lines.append(
            f"Stats: initial_balance {result.stats.initial_balance:.2f}, "
            f"consecutive_losses_at_end {result.stats.consecutive_losses_at_end}"
        )
    if result.findings:
        lines.append(f"Findings ({len(result.findings)}):")
        lines.extend(f"  - [{f.level}] {f.type}: {f.message}" for f in result.findings)
    else:
        lines.append("Findings: none (within limits).")
    return "\n".join(lines)


def _event(title: str, human: str, technical: Any) -> dict:
    return {
        "title": title,
        "human": human,
        "technical": json.dumps(technical, indent=2, default=str),
    }


def build_human_events(result: DryRunResult) -> list[dict]:
    events = [_event("Connection (API)", _connection_line(result.connection), result.connection)]
    if not result.ok:
        return events

    events.append(
        _event(
            "Account (balance / equity)",
            f"Balance: {result.balance} | Equity: {result.equity}",
            {"balance": result.balance, "equity": result.equity, "currency": result.currency},
        )
    )
    stats = result.stats.to_dict() if result.stats else {}
    daily = ", ".join(f"{d['date']}={d['profit']}" for d in stats.get("daily_stats", [])) or "none"
    events.append(
        _event(
            "Closed orders (daily loss, drawdown, revenge)",
            f"{result.closed_orders_count} closed orders. Daily P&L by date: {daily}. "
            f"Consecutive losses at end: {stats.get('consecutive_losses_at_end', 0)}.",
            {"count": result.closed_orders_count, **stats},
        )
    )
    if result.open_positions:
        positions_human = " | ".join(
            f"{p.symbol} {p.side} vol={p.volume} SL={p.stop_loss if p.stop_loss is not None else 'none'} "
            f"riskPct={'n/a' if p.risk_pct is None else f'{p.risk_pct:.2f}'}%"
            for p in result.open_positions
        )
    else:
        positions_human = "No open positions (or open positions API not available / empty)."
    events.append(
        _event(
            "Open positions (max risk/trade & exposure)",
            positions_human,
            [p.to_dict() for p in result.open_positions],
        )
    )
    limit = result.rules.max_exposure_pct if result.rules else None
    events.append(
        _event(
            "Current exposure %",
            "N/A (no open positions with a stop loss)."
            if result.current_exposure_pct is None
            else f"{result.current_exposure_pct:.2f}% (limit {limit}%)",
            {"current_exposure_pct": result.current_exposure_pct, "limit": limit},
        )
    )
    events.append(
        _event(
            "Risk findings (would trigger alert + Telegram)",
            " | ".join(f"[{f.level}] {f.type}: {f.message}" for f in result.findings) or "None.",
            [f.to_dict() for f in result.findings],
        )
    )
    return events


@dataclass
class LiveStatus:
    as_of: date
    daily_loss_pct: Optional[float] = None
    current_exposure_pct: Optional[float] = None


def today_loss_pct(stats: StatsForRisk, today: date) -> Optional[float]:
    """Today's realised loss as a positive % of the reconstructed starting balance."""
    if stats.initial_balance <= 0:
        return None
    profit = sum(d.profit for d in stats.daily_stats if d.date == today)
    return max(0.0, -profit / stats.initial_balance * 100)


def run_live_status(
    *,
    account_id: str,
    gateway,
    today: Optional[date] = None,
) -> LiveStatus:
    as_of = today or today_utc()
    snapshot, error = _fetch_snapshot(gateway, account_id)
    if error:
        logger.info("Account %s: live status unavailable (%s)", mask_ref(account_id), error)
        return LiveStatus(as_of=as_of)

    stats = build_stats_for_risk(snapshot.balance, snapshot.orders)
    equity = snapshot.equity if snapshot.equity > 0 else snapshot.balance
    positions = build_open_positions_for_risk(snapshot.positions, equity)
    return LiveStatus(
        as_of=as_of,
        daily_loss_pct=today_loss_pct(stats, as_of),
        current_exposure_pct=compute_current_exposure(positions),
    )


def list_linked_accounts(db: Session) -> list[tuple[str, str]]:
    rows = db.execute(
        select(TradingAccount.user_id, TradingAccount.broker_account_id)
        .where(TradingAccount.broker_account_id.is_not(None))
        .order_by(TradingAccount.created_at.asc(), TradingAccount.id.asc())
    ).all()
    return [(user_id, account_id) for user_id, account_id in rows if account_id]


def _sweep_one(session_factory, gateway, dispatcher, user_id: str, account_id: str) -> SweepAccountResult:
    db = session_factory()
    try:
        result = run_risk_check_for_account(
            db,
            user_id=user_id,
            account_id=account_id,
            gateway=gateway,
            dispatcher=dispatcher,
        )
        return SweepAccountResult(
            user_ref=mask_ref(user_id),
            account_ref=mask_ref(account_id),
            ok=result.ok,
            findings_count=len(result.findings),
            error=result.error,
        )
    except Exception as exc:
        # one account must never take the sweep down with it
        logger.exception("Account %s: risk check crashed", mask_ref(account_id))
        return SweepAccountResult(
            user_ref=mask_ref(user_id),
            account_ref=mask_ref(account_id),
            ok=False,
            error=f"{exc.__class__.__name__}: {exc}",
        )
    finally:
        db.close()


def run_risk_check_all(
    *,
    gateway,
    dispatcher: AlertDispatcher,
    session_factory=SessionLocal,
    max_workers: Optional[int] = None,
) -> SweepResult:
    db = session_factory()
    try:
        accounts = list_linked_accounts(db)
    finally:
        db.close()

    if not accounts:
        return SweepResult(ok=True, accounts_checked=0)

    workers = max(1, min(int(max_workers or settings.RISK_SWEEP_MAX_WORKERS), len(accounts)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="risk-sweep") as pool:
        futures = [
            pool.submit(_sweep_one, session_factory, gateway, dispatcher, user_id, account_id)
            for user_id, account_id in accounts
        ]
        # keep linked-account order in the report
        results = [f.result() for f in futures]

    db = session_factory()
    try:
        log_audit_event(
            db,
            action="risk.sweep.completed",
            entity_type="risk_sweep",
            details={
                "accounts_checked": len(accounts),
                "failed": sum(1 for r in results if not r.ok),
                "findings": sum(r.findings_count for r in results),
            },
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Could not record sweep audit event: %s", exc)
    finally:
        db.close()

    return SweepResult(ok=True, accounts_checked=len(accounts), results=results)


def build_account_gateway():
    return build_metatrader_client()


def build_alert_dispatcher() -> AlertDispatcher:
    return AlertDispatcher(build_notifier())
