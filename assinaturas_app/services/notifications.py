# assinaturas_app/services/notifications.py
# -*- coding: utf-8 -*-
"""
Despacho de notificações (e-mail e WhatsApp) com log persistente.

Toda tentativa grava um NotificationLog *antes* do envio. No WhatsApp,
sem conta disponível o log fica ``pending`` e é reenviado pelo job de
retry; só vira ``failed`` quando o bridge recusa a mensagem.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from flask import current_app, render_template
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import ChannelAccount, NotificationLog
from . import mailer, whatsapp
from .settings import get_flag, get_setting

ENABLED_KEY = "WHATSAPP_NOTIFICATIONS_ENABLED"
TEMPLATES_GROUP = "whatsapp_templates"

SENT = "sent"
PENDING = "pending"
FAILED = "failed"
SKIPPED = "skipped"

DEFAULT_MESSAGES = {
    "3days": (
        "Olá {name}!\n\nSeu plano *{plan_name}* vence em 3 dias ({expires_on}).\n\n"
        "Renove agora para não perder o acesso: {renew_url}"
    ),
    "1day": (
        "Olá {name}!\n\nSeu plano *{plan_name}* vence amanhã ({expires_on}).\n\n"
        "Enviamos por e-mail o PIX/boleto de renovação. Se preferir: {renew_url}"
    ),
    "daily_reminder": (
        "Olá {name}!\n\nSeu plano *{plan_name}* vence hoje às {expires_time}.\n\n"
        "Renove para continuar usando: {renew_url}"
    ),
    "expired": (
        "Olá {name}!\n\nSeu plano *{plan_name}* expirou.\n\n"
        "Seus webinários foram pausados e novos leads não serão capturados, "
        "mas *seus dados estão seguros!*\n\nRenove agora: {renew_url}"
    ),
    "daily_expired": (
        "Olá {name}!\n\nSeu plano *{plan_name}* expirou.\n\nRenove agora: {renew_url}"
    ),
    "renewal_payment": (
        "Olá {name}!\n\nGeramos o pagamento de renovação do plano *{plan_name}* ({amount}).\n\n"
        "PIX copia e cola:\n{pix_code}\n\nOu finalize em: {renew_url}"
    ),
    "payment_failed": (
        "Olá {name}!\n\nHouve um problema com seu pagamento do plano *{plan_name}*.\n\n"
        "Motivo: {reason}\n{action}\n\nRegularizar: {renew_url}"
    ),
    "pix_recovery": (
        "Olá {name}!\n\nNotamos que você ainda não finalizou sua compra.\n\n"
        "Plano: {plan_name}\nValor: {amount}\n\nFinalize agora:\n{checkout_url}\n\n"
        "Dúvidas? Responda esta mensagem!"
    ),
}


class _Blank(defaultdict):
    def __missing__(self, key):
        return ""


def render_message(type_: str, **data) -> str:
    """Texto do WhatsApp; um template salvo em Settings tem precedência sobre o padrão."""
    template = get_setting(type_, group=TEMPLATES_GROUP, default="") or DEFAULT_MESSAGES.get(type_, "")
    return template.format_map(_Blank(str, data))


def renew_url() -> str:
    return f"{current_app.config.get('PUBLIC_BASE_URL', '')}/checkout"


def format_brl(cents) -> str:
    value = f"{(cents or 0) / 100:,.2f}"
    return "R$ " + value.replace(",", "X").replace(".", ",").replace("X", ".")


def whatsapp_enabled() -> bool:
    return get_flag(ENABLED_KEY, group="notifications", default=True)


def _log(channel: str, type_: str, contact: str, message: str, name=None, subject=None) -> NotificationLog:
    entry = NotificationLog(
        channel=channel, type=type_, recipient_contact=contact,
        recipient_name=name, subject=subject, message=message, status=PENDING,
    )
    db.session.add(entry)
    db.session.commit()
    return entry


class NotificationDispatcher:
    """Envio por WhatsApp com rotação de contas."""

    def __init__(self, bridge: whatsapp.WhatsAppBridge | None = None):
        self.bridge = bridge or whatsapp.get_bridge()

    def is_enabled(self) -> bool:
        return self.bridge.configured and whatsapp_enabled()

    def send(self, contact: str | None, message: str, type: str, name: str | None = None) -> bool:
        return self.dispatch(contact, message, type, name=name) == SENT

    def dispatch(self, contact: str | None, message: str, type: str, name: str | None = None,
                 now: datetime | None = None) -> str:
        if not self.is_enabled():
            current_app.logger.info("[notifications] WhatsApp desabilitado; %s ignorado", type)
            return SKIPPED
        phone = whatsapp.format_phone(contact, current_app.config.get("WHATSAPP_COUNTRY_CODE", "55"))
        if not phone:
            current_app.logger.info("[notifications] Sem telefone para %s (%s)", name or "-", type)
            return SKIPPED

        entry = _log("whatsapp", type, phone, message, name=name)
        return self._attempt(entry, now or datetime.utcnow())

    def _attempt(self, entry: NotificationLog, now: datetime) -> str:
        account = whatsapp.select_account(now)
        if account is None:
            return PENDING

        status = self.bridge.get_status(account.id)
        if status != "connected":
            current_app.logger.warning("[notifications] Conta %s não está conectada (%s)", account.label, status)
            whatsapp.mark_disconnected(account.id, status)
            db.session.commit()
            return PENDING

        result = self.bridge.send(account.id, entry.recipient_contact, entry.message)
        entry.account_id = account.id
        if result.success:
            whatsapp.increment_usage(account.id, now)
            entry.status = SENT
            entry.sent_at = now
            entry.error = None
            current_app.logger.info("[notifications] %s enviado para %s via %s",
                                    entry.type, entry.recipient_contact, account.label)
        else:
            entry.status = FAILED
            entry.error = result.error
            current_app.logger.warning("[notifications] Falha ao enviar %s para %s: %s",
                                       entry.type, entry.recipient_contact, result.error)
        db.session.commit()
        return entry.status

    def retry_pending(self, batch_size: int | None = None, now: datetime | None = None) -> int:
        """Reenvia logs ``pending`` do WhatsApp; para o lote quando a conta cai."""
        if not self.is_enabled():
            return 0
        now = now or datetime.utcnow()
        batch_size = batch_size or current_app.config.get("NOTIFICATION_RETRY_BATCH_SIZE", 20)
        pending = (
            NotificationLog.query.filter_by(channel="whatsapp", status=PENDING)
            .order_by(NotificationLog.created_at.asc(), NotificationLog.id.asc())
            .limit(batch_size)
            .all()
        )
        sent = 0
        for entry in pending:
            try:
                outcome = self._attempt(entry, now)
            except SQLAlchemyError:
                db.session.rollback()
                current_app.logger.exception("[notifications] Erro ao reenviar log %s", entry.id)
                continue
            if outcome == PENDING:
                # sem conta ou conta desconectou: o resto fica para o próximo ciclo
                break
            if outcome == SENT:
                sent += 1
        if pending:
            current_app.logger.info("[notifications] Retry: %s/%s reenviados", sent, len(pending))
        return sent


def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()


def send_whatsapp_notification(phone, type_: str, name: str | None = None, **data) -> str:
    message = render_message(type_, name=name or "Cliente", **data)
    return get_dispatcher().dispatch(phone, message, type_, name=name)


def send_email_notification(to: str | None, subject: str, template: str, type_: str,
                            name: str | None = None, **context) -> bool:
    """Renderiza ``emails/<template>.{txt,html}``, registra no log e envia via SMTP."""
    if not to:
        return False
    if not mailer.mail_configured():
        current_app.logger.info("[notifications] SMTP não configurado; e-mail %s ignorado", type_)
        return False
    context.setdefault("name", name or "Cliente")
    context.setdefault("app_name", current_app.config.get("APP_NAME", ""))
    context.setdefault("renew_url", renew_url())
    text = render_template(f"emails/{template}.txt", **context)
    html = render_template(f"emails/{template}.html", **context)

    entry = _log("email", type_, to, text, name=name, subject=subject)
    ok, error = mailer.send_email(to, subject, text, html)
    entry.status = SENT if ok else FAILED
    entry.sent_at = datetime.utcnow() if ok else None
    entry.error = error
    db.session.commit()
    return ok


def notification_status() -> dict:
    total = ChannelAccount.query.filter_by(scope=whatsapp.NOTIFICATION_SCOPE).count()
    connected = whatsapp.connected_accounts(datetime.utcnow())
    if connected:
        status = "connected"
    else:
        status = "disconnected" if total else "not_configured"
    return {
        "configured": total > 0,
        "enabled": whatsapp_enabled(),
        "status": status,
        "account_id": connected[0].id if connected else None,
        "phone_number": connected[0].phone_number if connected else None,
        "connected_accounts": len(connected),
        "total_accounts": total,
        "pending": NotificationLog.query.filter_by(channel="whatsapp", status=PENDING).count(),
    }
