# assinaturas_app/services/renewal.py
# -*- coding: utf-8 -*-
"""
Renovação automática por PIX/boleto para quem não tem cobrança recorrente.

Cada instrumento é pedido de forma independente: falha no PIX não impede o
boleto, e o e-mail de renovação sai sempre (com link do checkout quando
nenhum instrumento foi gerado).
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Payment, Tenant
from .gateways import GatewayError, PaymentGateway, get_gateways
from .notifications import format_brl, send_email_notification, send_whatsapp_notification
from .plans import get_plan


def has_live_subscription(email: str, gateways: dict[str, PaymentGateway]) -> bool:
    """True se algum gateway tem assinatura ativa/autorizada/pendente para o e-mail.

    Erro de consulta conta como "tem assinatura".
    """
    for name, gw in gateways.items():
        if not gw.is_configured():
            continue
        try:
            if gw.has_active_subscription(email):
                current_app.logger.info("[renewal] %s já tem assinatura recorrente em %s", email, name)
                return True
        except GatewayError:
            current_app.logger.exception("[renewal] Falha ao consultar assinaturas de %s em %s", email, name)
            return True
    return False


def last_document(email: str) -> str | None:
    """CPF do último pagamento aprovado (boleto exige documento)."""
    row = (
        Payment.query.filter(
            Payment.tenant_email == email,
            Payment.status == "approved",
            Payment.document.isnot(None),
            Payment.document != "",
        )
        .order_by(Payment.approved_at.desc(), Payment.id.desc())
        .first()
    )
    return row.document if row else None


def _apply_ref(payment: Payment, gateway: str, gateway_id: str) -> None:
    if gateway == "stripe":
        payment.stripe_payment_intent_id = payment.stripe_payment_intent_id or gateway_id
    else:
        payment.mercadopago_payment_id = payment.mercadopago_payment_id or gateway_id


def generate_renewal_payment(tenant: Tenant, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    cfg = current_app.config
    try:
        plan = get_plan(tenant.plan_id)
        if plan is None:
            current_app.logger.info("[renewal] %s sem plano; renovação ignorada", tenant.email)
            return False

        gateways = get_gateways()
        gw = gateways.get(plan.gateway or "mercadopago")
        if gw is None or not gw.is_configured():
            current_app.logger.info("[renewal] Gateway %s não configurado; renovação ignorada", plan.gateway)
            return False

        if has_live_subscription(tenant.email, gateways):
            return False

        document = last_document(tenant.email)
        payment = Payment(
            tenant_email=tenant.email,
            tenant_name=tenant.display_name,
            phone=tenant.phone,
            plan_id=plan.id,
            amount_cents=plan.price_cents or 0,
            status="pending",
            document=document,
        )
        db.session.add(payment)
        db.session.commit()

        key = f"renewal-{payment.id}"
        description = f"Renovação {plan.name}"

        try:
            pix = gw.create_pix(
                amount_cents=payment.amount_cents, email=tenant.email, name=tenant.display_name,
                description=description, expires_minutes=cfg.get("PIX_EXPIRATION_MINUTES", 30),
                reference=str(payment.id), idempotency_key=f"{key}-pix",
            )
            payment.pix_code = pix.code
            payment.pix_qr_image = pix.image
            payment.pix_expires_at = pix.expires_at
            payment.method = "pix"
            _apply_ref(payment, gw.name, pix.gateway_id)
        except GatewayError:
            current_app.logger.exception("[renewal] Falha ao gerar PIX do pagamento %s", payment.id)

        if document:
            try:
                boleto = gw.create_boleto(
                    amount_cents=payment.amount_cents, email=tenant.email, name=tenant.display_name,
                    document=document, description=description,
                    expires_days=cfg.get("BOLETO_EXPIRATION_DAYS", 3),
                    reference=str(payment.id), idempotency_key=f"{key}-boleto",
                )
                payment.boleto_url = boleto.url
                payment.boleto_code = boleto.code
                payment.boleto_expires_at = boleto.expires_at
                payment.method = payment.method or "boleto"
                _apply_ref(payment, gw.name, boleto.gateway_id)
            except GatewayError:
                current_app.logger.exception("[renewal] Falha ao gerar boleto do pagamento %s", payment.id)
        else:
            current_app.logger.info("[renewal] %s sem CPF registrado; boleto não gerado", tenant.email)

        db.session.commit()

        generated = bool(payment.pix_code or payment.boleto_url)
        expires_on = tenant.access_expires_at.strftime("%d/%m/%Y") if tenant.access_expires_at else ""
        send_email_notification(
            tenant.email,
            f"Renovação do plano {plan.name}",
            "renewal_payment",
            "renewal_payment",
            name=tenant.display_name,
            plan_name=plan.name,
            amount=format_brl(payment.amount_cents),
            expires_on=expires_on,
            pix_code=payment.pix_code,
            pix_qr_image=payment.pix_qr_image,
            pix_expires_at=payment.pix_expires_at.strftime("%d/%m/%Y %H:%M") if payment.pix_expires_at else "",
            boleto_url=payment.boleto_url,
            boleto_code=payment.boleto_code,
            boleto_expires_at=payment.boleto_expires_at.strftime("%d/%m/%Y") if payment.boleto_expires_at else "",
        )
        if payment.pix_code:
            send_whatsapp_notification(
                tenant.phone, "renewal_payment", name=tenant.display_name,
                plan_name=plan.name, amount=format_brl(payment.amount_cents),
                pix_code=payment.pix_code, renew_url=f"{cfg.get('PUBLIC_BASE_URL', '')}/checkout",
            )

        current_app.logger.info("[renewal] Pagamento %s gerado para %s (pix=%s boleto=%s)",
                                payment.id, tenant.email, bool(payment.pix_code), bool(payment.boleto_url))
        return generated
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[renewal] Erro ao gerar renovação para %s", tenant.email)
        return False
