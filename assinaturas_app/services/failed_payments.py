# assinaturas_app/services/failed_payments.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import Payment, Tenant
from .notifications import PENDING, SENT, send_email_notification, send_whatsapp_notification
from .payment_errors import friendly_error
from .plans import get_plan_name

DEFAULT_LADDER_DAYS = (1, 3, 7)


def due_reminder(payment: Payment, now: datetime, ladder=DEFAULT_LADDER_DAYS,
                 cooldown_hours: float = 23) -> int | None:
    """Número do lembrete devido (1..len(ladder)) ou None."""
    sent = payment.reminders_sent or 0
    if sent >= len(ladder) or payment.last_failure_at is None:
        return None
    days_since_failure = (now - payment.last_failure_at).total_seconds() / 86400
    if days_since_failure < ladder[sent]:
        return None
    if payment.last_reminder_at and now - payment.last_reminder_at < timedelta(hours=cooldown_hours):
        return None
    return sent + 1


def failed_recurring_payments(max_reminders: int) -> list[Payment]:
    return (
        Payment.query.filter(
            Payment.status == "rejected",
            or_(Payment.stripe_subscription_id.isnot(None), Payment.mercadopago_preapproval_id.isnot(None)),
            Payment.last_failure_at.isnot(None),
            Payment.reminders_sent < max_reminders,
        )
        .order_by(Payment.last_failure_at.asc())
        .all()
    )


def _notify(payment: Payment, number: int, total: int) -> bool:
    tenant = Tenant.query.filter_by(email=payment.tenant_email).first()
    name = payment.tenant_name or (tenant.display_name if tenant else "Cliente")
    phone = payment.phone or (tenant.phone if tenant else None)
    gateway = payment.gateway_ref[0] if payment.gateway_ref else "mercadopago"
    error = friendly_error(gateway, payment.gateway_error_code)
    plan_name = get_plan_name(payment.plan_id)

    emailed = send_email_notification(
        payment.tenant_email,
        f"Problema na cobrança do plano {plan_name} ({number}/{total})",
        "payment_failed",
        "payment_failed",
        name=name,
        plan_name=plan_name,
        reason=error.message,
        action=error.action,
        final=number >= total,
    )
    whatsapp = send_whatsapp_notification(
        phone, "payment_failed", name=name, plan_name=plan_name,
        reason=error.message, action=error.action,
        renew_url=f"{current_app.config.get('PUBLIC_BASE_URL', '')}/checkout",
    )
    return emailed or whatsapp in (SENT, PENDING)


def process_failed_payment_reminders(now: datetime | None = None) -> int:
    """Régua 1/3/7 dias para cobranças recorrentes recusadas. Devolve quantos lembretes saíram."""
    now = now or datetime.utcnow()
    cfg = current_app.config
    ladder = tuple(cfg.get("FAILED_PAYMENT_LADDER_DAYS", DEFAULT_LADDER_DAYS))
    cooldown = float(cfg.get("FAILED_PAYMENT_COOLDOWN_HOURS", 23))

    sent = 0
    for payment in failed_recurring_payments(len(ladder)):
        try:
            number = due_reminder(payment, now, ladder, cooldown)
            if number is None:
                continue
            if not _notify(payment, number, len(ladder)):
                current_app.logger.info("[failed-payments] Nenhum canal entregou o lembrete %s do pagamento %s",
                                        number, payment.id)
                continue
            payment.reminders_sent = number
            payment.last_reminder_at = now
            db.session.commit()
            sent += 1
            current_app.logger.info("[failed-payments] Lembrete %s/%s enviado para %s",
                                    number, len(ladder), payment.tenant_email)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("[failed-payments] Erro no pagamento %s", payment.id)
    return sent
