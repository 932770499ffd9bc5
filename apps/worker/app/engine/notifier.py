import logging
from dataclasses import dataclass
from html import escape
from typing import Any, Optional

import requests

from apps.api.app.core.config import settings

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
DEFAULT_BOT_USERNAME = "RiskSentAlertsBot"


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str = ""
    bot_username: str = ""
    alert_channel_id: str = ""
    timeout_seconds: float = 8.0

    @classmethod
    def from_settings(cls) -> "TelegramConfig":
        return cls(
            bot_token=(settings.TELEGRAM_BOT_TOKEN or "").strip(),
            bot_username=(settings.TELEGRAM_BOT_USERNAME or "").strip(),
            alert_channel_id=(settings.TELEGRAM_ALERT_CHANNEL_ID or "").strip(),
            timeout_seconds=float(settings.TELEGRAM_TIMEOUT_SECONDS),
        )

    @property
    def link_username(self) -> str:
        return self.bot_username or DEFAULT_BOT_USERNAME


@dataclass(frozen=True)
class NotifyResult:
    ok: bool
    reason: Optional[str] = None


def format_alert_text(message: str, severity: str, solution: Optional[str] = None) -> str:
    label = "HIGH" if severity == "high" else "MEDIUM"
    text = f"<b>{label} ALERT</b>\n\n{escape(message)}"
    if solution:
        text += f"\n\nSolution: {escape(solution)}"
    return text


class TelegramNotifier:
    def __init__(self, config: TelegramConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._http = session or requests

    @property
    def is_configured(self) -> bool:
        return bool(self.config.bot_token)

    @property
    def has_alert_channel(self) -> bool:
        return bool(self.config.alert_channel_id)

    def _url(self, method: str) -> str:
        return f"{TELEGRAM_API}/bot{self.config.bot_token}/{method}"

    def send_message(self, chat_id: str, text: str) -> NotifyResult:
        if not self.is_configured:
            return NotifyResult(ok=False, reason="TELEGRAM_BOT_TOKEN not set")
        if not chat_id:
            return NotifyResult(ok=False, reason="No Telegram linked")

        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            response = self._http.post(
                self._url("sendMessage"),
                json=payload,
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.warning("Telegram sendMessage failed: %s", exc.__class__.__name__)
            return NotifyResult(ok=False, reason=f"Telegram request failed: {exc.__class__.__name__}")

        if response.status_code >= 400:
            reason = response.reason or f"HTTP {response.status_code}"
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                reason = body.get("description") or reason
            logger.warning("Telegram sendMessage rejected (%s): %s", response.status_code, reason)
            return NotifyResult(ok=False, reason=reason)
        return NotifyResult(ok=True)

    def send_alert(
        self,
        chat_id: Optional[str],
        message: str,
        severity: str,
        solution: Optional[str] = None,
    ) -> NotifyResult:
        return self.send_message(chat_id or "", format_alert_text(message, severity, solution))

    def send_channel_alert(
        self,
        message: str,
        severity: str,
        solution: Optional[str] = None,
    ) -> NotifyResult:
        if not self.has_alert_channel:
            return NotifyResult(ok=False, reason="TELEGRAM_ALERT_CHANNEL_ID not set")
        return self.send_message(
            self.config.alert_channel_id,
            format_alert_text(message, severity, solution),
        )

    def get_me(self) -> dict[str, Any]:
        """Probe the bot token. Returns Telegram's JSON, or {"ok": False, "description": ...}."""
        if not self.is_configured:
            return {"ok": False, "description": "TELEGRAM_BOT_TOKEN not set"}
        try:
            response = self._http.get(self._url("getMe"), timeout=self.config.timeout_seconds)
            body = response.json()
        except requests.RequestException as exc:
            return {"ok": False, "description": f"Telegram request failed: {exc.__class__.__name__}"}
        except ValueError:
            return {"ok": False, "description": "Telegram returned a non-JSON response"}
        if not isinstance(body, dict):
            return {"ok": False, "description": "Telegram returned an unexpected response"}
        return body


def build_notifier() -> TelegramNotifier:
    return TelegramNotifier(TelegramConfig.from_settings())
