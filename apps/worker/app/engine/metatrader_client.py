import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from apps.api.app.core.config import settings
from apps.api.app.core.logging import mask_ref
from apps.api.app.services.risk_stats import ClosedOrder, OpenPosition

logger = logging.getLogger(__name__)

ACCOUNT_SUMMARY = "AccountSummary"
CLOSED_ORDERS = "ClosedOrders"
OPEN_POSITIONS = "OpenPositions"
# older accounts only expose open trades under this name
OPEN_ORDERS_FALLBACK = "OpenOrders"

PERMISSION_DENIED_STATUSES = {401, 403}


@dataclass
class FetchResult:
    endpoint: str
    ok: bool
    status: Optional[int] = None
    error: Optional[str] = None
    payload: Any = None

    def to_dict(self) -> dict:
        return {
            "endpoint": self.endpoint,
            "ok": self.ok,
            "status": self.status,
            "error": self.error,
        }


@dataclass
class AccountSnapshot:
    account_id: str
    summary: FetchResult
    closed_orders: FetchResult
    open_positions: FetchResult
    balance: float = 0.0
    equity: float = 0.0
    currency: Optional[str] = None
    orders: list[ClosedOrder] = field(default_factory=list)
    positions: list[OpenPosition] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.summary.ok

    @property
    def error(self) -> Optional[str]:
        if self.summary.ok:
            return None
        return f"{ACCOUNT_SUMMARY} failed: {self.summary.error}"

    @property
    def connection(self) -> dict[str, dict]:
        return {
            "account_summary": self.summary.to_dict(),
            "closed_orders": self.closed_orders.to_dict(),
            "open_positions": self.open_positions.to_dict(),
        }

    def raw_payloads(self) -> dict[str, Any]:
        return {
            "account_summary": self.summary.payload,
            "closed_orders": self.closed_orders.payload,
            "open_positions": self.open_positions.payload,
        }


def _pick(row: dict, *keys):
    for key in keys:
        if key in row and row[key] is not None:
            return row[key]
    return None


def _to_float(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _unwrap_list(payload, *keys) -> list:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return []


def parse_close_time(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 10_000_000_000 else value
        try:
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_closed_orders(payload) -> list[ClosedOrder]:
    orders = []
    for row in _unwrap_list(payload, "orders", "closedOrders", "deals", "data", "items"):
        if not isinstance(row, dict):
            continue
        close_time = parse_close_time(_pick(row, "closeTime", "close_time", "CloseTime", "timeClose"))
        profit = _pick(row, "profit", "Profit")
        if close_time is None or isinstance(profit, bool) or not isinstance(profit, (int, float)):
            continue
        orders.append(ClosedOrder(close_time=close_time, profit=float(profit)))
    return orders


def normalize_open_positions(payload) -> list[OpenPosition]:
    positions = []
    for row in _unwrap_list(payload, "orders", "positions", "openOrders", "data", "items"):
        if not isinstance(row, dict):
            continue
        symbol = _pick(row, "symbol", "Symbol")
        if not isinstance(symbol, str) or not symbol.strip():
            continue
        stop_loss = _to_float(_pick(row, "stopLoss", "stop_loss", "StopLoss", "sl"))
        if stop_loss == 0:
            # MetaTrader reports "no stop loss" as 0
            stop_loss = None
        side_raw = str(_pick(row, "type", "side", "orderType", "Type") or "").lower()
        positions.append(
            OpenPosition(
                symbol=symbol.strip(),
                volume=_to_float(_pick(row, "volume", "lots", "Volume", "Lots")) or 0.0,
                open_price=_to_float(_pick(row, "openPrice", "open_price", "OpenPrice", "priceOpen")) or 0.0,
                stop_loss=stop_loss,
                side="sell" if "sell" in side_raw else "buy",
            )
        )
    return positions


class MetaTraderApiClient:
    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or settings.METATRADERAPI_BASE_URL).rstrip("/")
        self.timeout = float(timeout if timeout is not None else settings.METATRADERAPI_TIMEOUT_SECONDS)
        self._http = session or requests

    def _get(self, endpoint: str, account_id: str) -> FetchResult:
        url = f"{self.base_url}/{endpoint}"
        headers = {"x-api-key": self.api_key, "Accept": "application/json"}
        try:
            response = self._http.get(
                url,
                params={"id": account_id},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout:
            return FetchResult(endpoint=endpoint, ok=False, error=f"timeout after {self.timeout:g}s")
        except requests.RequestException as exc:
            return FetchResult(endpoint=endpoint, ok=False, error=f"{exc.__class__.__name__}: {exc}")

        if response.status_code >= 400:
            return FetchResult(
                endpoint=endpoint,
                ok=False,
                status=response.status_code,
                error=f"HTTP {response.status_code}: {response.text[:200]}",
            )
        try:
            payload = response.json()
        except ValueError:
            return FetchResult(
                endpoint=endpoint,
                ok=False,
                status=response.status_code,
                error="Malformed JSON payload",
            )
        return FetchResult(endpoint=endpoint, ok=True, status=response.status_code, payload=payload)

    def get_account_summary(self, account_id: str) -> FetchResult:
        result = self._get(ACCOUNT_SUMMARY, account_id)
        if result.ok and (
            not isinstance(result.payload, dict)
            or _to_float(result.payload.get("balance")) is None
        ):
            result.ok = False
            result.error = "Summary payload has no numeric balance"
        return result

    def get_closed_orders(self, account_id: str) -> FetchResult:
        return self._get(CLOSED_ORDERS, account_id)

    def get_open_positions(self, account_id: str) -> FetchResult:
        result = self._get(OPEN_POSITIONS, account_id)
        if not result.ok and result.status in PERMISSION_DENIED_STATUSES:
            logger.debug(
                "%s denied for %s, retrying %s",
                OPEN_POSITIONS,
                mask_ref(account_id),
                OPEN_ORDERS_FALLBACK,
            )
            result = self._get(OPEN_ORDERS_FALLBACK, account_id)
        return result

    def fetch_account_snapshot(self, account_id: str) -> AccountSnapshot:
        # summary and closed orders are independent; open positions follow
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="mtapi") as pool:
            summary_future = pool.submit(self.get_account_summary, account_id)
            closed_future = pool.submit(self.get_closed_orders, account_id)
            summary = summary_future.result()
            closed = closed_future.result()
        open_result = self.get_open_positions(account_id)

        snapshot = AccountSnapshot(
            account_id=account_id,
            summary=summary,
            closed_orders=closed,
            open_positions=open_result,
        )
        if summary.ok:
            balance = _to_float(summary.payload.get("balance")) or 0.0
            equity = _to_float(summary.payload.get("equity"))
            snapshot.balance = balance
            snapshot.equity = equity if equity is not None and equity > 0 else balance
            snapshot.currency = summary.payload.get("currency")
        if closed.ok:
            snapshot.orders = normalize_closed_orders(closed.payload)
        if open_result.ok:
            snapshot.positions = normalize_open_positions(open_result.payload)

        for part in (summary, closed, open_result):
            if not part.ok:
                logger.warning(
                    "Account %s: %s unavailable (%s)",
                    mask_ref(account_id),
                    part.endpoint,
                    part.error,
                )
        return snapshot


def build_metatrader_client() -> Optional[MetaTraderApiClient]:
    api_key = (settings.METATRADERAPI_API_KEY or "").strip()
    if not api_key:
        return None
    return MetaTraderApiClient(api_key=api_key)
