# assinaturas_app/services/pix_recovery.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import or_, update

from ..extensions import db
from ..models import Payment
from .notifications import PENDING, SENT, format_brl, send_email_notification, send_whatsapp_notification
from .plans import get_plan_name


def expired_pix_payments(now: datetime) -> list[Payment]:
    return (
        Payment.query.filter(
            Payment.method == "pix",
            Payment.status == "pending",
            Payment.pix_expires_at.isnot(None),
            Payment.pix_expires_at <= now,
            Payment.pix_recovery_sent.is_(False),
            # boleto do mesmo pagamento ainda pode ser pago
            or_(Payment.boleto_expires_at.is_(None), Payment.boleto_expires_at <= now),
        )
        .order_by(Payment.pix_expires_at.asc())
        .all()
    )


def mark_pix_expired(payment_id: int) -> bool:
    """Marca como expirado só se ainda estiver pendente (aprovação concorrente vence)."""
    result = db.session.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == "pending")
        .values(pix_recovery_sent=True, status="expired", status_detail="PIX expirado")
    )
    db.session.commit()
    return result.rowcount > 0


def process_expired_pix(now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    recovered = 0
    payments = expired_pix_payments(now)
    if payments:
        current_app.logger.info("[pix-recovery] %s PIX expirados", len(payments))

    for payment in payments:
        try:
            plan_name = get_plan_name(payment.plan_id)
            base = current_app.config.get("PUBLIC_BASE_URL", "")
            checkout_url = f"{base}/checkout/{payment.plan_id}?recuperacao=true"
            amount = format_brl(payment.amount_cents)
            name = payment.tenant_name or "Cliente"

            emailed = send_email_notification(
                payment.tenant_email,
                f"Seu PIX do plano {plan_name} expirou",
                "pix_recovery",
                "pix_recovery",
                name=name,
                plan_name=plan_name,
                amount=amount,
                checkout_url=checkout_url,
            )
            whatsapp = send_whatsapp_notification(
                payment.phone, "pix_recovery", name=name,
                plan_name=plan_name, amount=amount, checkout_url=checkout_url,
            )
            if emailed or whatsapp in (SENT, PENDING):
                if mark_pix_expired(payment.id):
                    recovered += 1
                current_app.logger.info("[pix-recovery] Recuperação enviada para %s (email=%s whatsapp=%s)",
                                        payment.tenant_email, emailed, whatsapp)
            else:
                current_app.logger.warning("[pix-recovery] Nenhum canal entregou a recuperação para %s",
                                           payment.tenant_email)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("[pix-recovery] Erro no pagamento %s", payment.id)
    return recovered
