# assinaturas_app/services/whatsapp.py
# -*- coding: utf-8 -*-
"""
Cliente do bridge HTTP de WhatsApp e rotação das contas de notificação.

Cada conta tem um limite de mensagens por hora; a seleção pega a primeira
conta conectada (prioridade, depois menor uso) que ainda está abaixo do
limite. Se só existe uma conta e ela estourou, ela é usada mesmo assim.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

import requests
from flask import current_app
from sqlalchemy import case, or_, update

from ..extensions import db
from ..models import ChannelAccount

NOTIFICATION_SCOPE = "notifications"
HOUR = timedelta(hours=1)


@dataclass
class SendResult:
    success: bool
    error: str | None = None
    message_id: str | None = None


class WhatsAppBridge:
    def __init__(self, base_url: str, token: str = "", timeout: float = 15):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token or ""
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def get_status(self, account_id) -> str:
        try:
            resp = requests.get(f"{self.base_url}/accounts/{account_id}/status",
                                headers=self._headers(), timeout=self.timeout)
            if resp.status_code >= 400:
                return "error"
            return (resp.json() or {}).get("status") or "unknown"
        except (requests.RequestException, ValueError):
            current_app.logger.exception("[whatsapp] Falha ao consultar status da conta %s", account_id)
            return "error"

    def send(self, account_id, phone: str, text: str) -> SendResult:
        try:
            resp = requests.post(f"{self.base_url}/accounts/{account_id}/messages",
                                 json={"to": phone, "text": text},
                                 headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            return SendResult(success=False, error=str(e))
        if resp.status_code >= 400:
            return SendResult(success=False, error=f"HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json() or {}
        except ValueError:
            data = {}
        if data.get("success") is False:
            return SendResult(success=False, error=data.get("error") or "send_failed")
        return SendResult(success=True, message_id=data.get("id"))


def get_bridge() -> WhatsAppBridge:
    bridge = current_app.extensions.get("whatsapp_bridge")
    if bridge is not None:
        return bridge
    cfg = current_app.config
    return WhatsAppBridge(
        cfg.get("WHATSAPP_API_URL", ""),
        cfg.get("WHATSAPP_API_TOKEN", ""),
        timeout=float(cfg.get("WHATSAPP_TIMEOUT_SECONDS", 15)),
    )


def format_phone(phone: str | None, country_code: str = "55") -> str:
    cleaned = "".join(ch for ch in (phone or "") if ch.isdigit())
    if not cleaned:
        return ""
    if not cleaned.startswith(country_code):
        cleaned = country_code + cleaned
    return cleaned


def sent_this_hour(account: ChannelAccount, now: datetime) -> int:
    start = account.hour_bucket_started_at
    if start is None or now - start >= HOUR:
        return 0
    return account.messages_sent_this_hour or 0


def connected_accounts(now: datetime) -> list[ChannelAccount]:
    accounts = ChannelAccount.query.filter_by(
        scope=NOTIFICATION_SCOPE, connection_status="connected"
    ).all()
    return sorted(accounts, key=lambda a: (a.priority or 0, sent_this_hour(a, now), a.id))


def select_account(now: datetime) -> ChannelAccount | None:
    accounts = connected_accounts(now)
    if not accounts:
        current_app.logger.info("[whatsapp] Nenhuma conta de notificação conectada")
        return None
    default_limit = current_app.config.get("WHATSAPP_DEFAULT_HOURLY_LIMIT", 10)
    for acc in accounts:
        limit = acc.hourly_limit or default_limit
        used = sent_this_hour(acc, now)
        if used < limit:
            current_app.logger.info("[whatsapp] Usando conta %s (%s/%s msgs/hora)", acc.label, used, limit)
            return acc
    if len(accounts) == 1:
        current_app.logger.info("[whatsapp] Única conta %s atingiu o limite; usando mesmo assim",
                                accounts[0].label)
        return accounts[0]
    current_app.logger.info("[whatsapp] Todas as contas atingiram o limite horário")
    return None


def increment_usage(account_id: int, now: datetime) -> None:
    """Incrementa o contador horário num único UPDATE (reinicia o bucket se passou 1h)."""
    stale = or_(
        ChannelAccount.hour_bucket_started_at.is_(None),
        ChannelAccount.hour_bucket_started_at <= now - HOUR,
    )
    db.session.execute(
        update(ChannelAccount)
        .where(ChannelAccount.id == account_id)
        .values(
            messages_sent_this_hour=case(
                (stale, 1), else_=ChannelAccount.messages_sent_this_hour + 1
            ),
            hour_bucket_started_at=case(
                (stale, now), else_=ChannelAccount.hour_bucket_started_at
            ),
            last_used_at=now,
        )
    )


def mark_disconnected(account_id: int, status: str) -> None:
    db.session.execute(
        update(ChannelAccount)
        .where(ChannelAccount.id == account_id)
        .values(connection_status=status if status not in ("error", "unknown") else "disconnected")
    )
