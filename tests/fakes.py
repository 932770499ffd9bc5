from apps.worker.app.engine.metatrader_client import (
    ACCOUNT_SUMMARY,
    CLOSED_ORDERS,
    OPEN_POSITIONS,
    AccountSnapshot,
    FetchResult,
)
from apps.worker.app.engine.notifier import NotifyResult


def make_snapshot(
    account_id="acct-0001",
    balance=10000.0,
    equity=None,
    orders=(),
    positions=(),
    summary_ok=True,
):
    summary = FetchResult(
        endpoint=ACCOUNT_SUMMARY,
        ok=summary_ok,
        status=200 if summary_ok else 500,
        error=None if summary_ok else "HTTP 500: upstream down",
        payload={"balance": balance} if summary_ok else None,
    )
    return AccountSnapshot(
        account_id=account_id,
        summary=summary,
        closed_orders=FetchResult(endpoint=CLOSED_ORDERS, ok=True, status=200, payload=[]),
        open_positions=FetchResult(endpoint=OPEN_POSITIONS, ok=True, status=200, payload=[]),
        balance=balance if summary_ok else 0.0,
        equity=(equity if equity is not None else balance) if summary_ok else 0.0,
        currency="USD" if summary_ok else None,
        orders=list(orders) if summary_ok else [],
        positions=list(positions) if summary_ok else [],
    )


class FakeGateway:
    def __init__(self, snapshots=None, default=None, fail_for=()):
        self.snapshots = dict(snapshots or {})
        self.default = default
        self.fail_for = set(fail_for)
        self.calls = []

    def fetch_account_snapshot(self, account_id):
        self.calls.append(account_id)
        if account_id in self.fail_for:
            raise RuntimeError("gateway exploded")
        if account_id in self.snapshots:
            return self.snapshots[account_id]
        if self.default is not None:
            return self.default
        return make_snapshot(account_id=account_id)


class FakeNotifier:
    def __init__(self, ok=True, channel=False):
        self.ok = ok
        self.channel = channel
        self.sent = []
        self.channel_sent = []

    @property
    def has_alert_channel(self):
        return self.channel

    def send_alert(self, chat_id, message, severity, solution=None):
        self.sent.append((chat_id, message, severity, solution))
        if not chat_id:
            return NotifyResult(ok=False, reason="No Telegram linked")
        return NotifyResult(ok=self.ok, reason=None if self.ok else "Forbidden")

    def send_channel_alert(self, message, severity, solution=None):
        self.channel_sent.append((message, severity, solution))
        return NotifyResult(ok=True)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", reason="OK"):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.reason = reason

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeHttp:
    """Stands in for the requests module: routes GET/POST by URL suffix."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def _respond(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        for suffix, response in self.routes.items():
            if url.endswith(suffix):
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse(status_code=404, text="not found", reason="Not Found")

    def get(self, url, **kwargs):
        return self._respond("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._respond("POST", url, kwargs)
