# assinaturas_app/models/payment.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from datetime import datetime
from ..extensions import db

# pagamento avulso não volta desses estados; assinatura só sai em "cancelled"
ONE_TIME_TERMINAL_STATUSES = ("approved", "cancelled", "rejected", "expired")


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    tenant_email = db.Column(db.String(180), nullable=False, index=True)
    tenant_name = db.Column(db.String(120), default="Cliente")
    phone = db.Column(db.String(40))
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)  # pending, approved, rejected, cancelled, expired
    status_detail = db.Column(db.String(255))
    method = db.Column(db.String(20))          # pix, boleto, credit_card
    document = db.Column(db.String(20))        # CPF do pagador (boleto exige)

    # referências nos gateways
    stripe_payment_intent_id = db.Column(db.String(120), index=True)
    stripe_subscription_id = db.Column(db.String(120), index=True)
    stripe_customer_id = db.Column(db.String(120))
    mercadopago_payment_id = db.Column(db.String(120), index=True)
    mercadopago_preapproval_id = db.Column(db.String(120), index=True)

    # PIX
    pix_code = db.Column(db.Text)              # copia e cola
    pix_qr_image = db.Column(db.Text)          # URL/base64 do QR
    pix_expires_at = db.Column(db.DateTime)
    pix_recovery_sent = db.Column(db.Boolean, nullable=False, default=False)

    # boleto
    boleto_url = db.Column(db.Text)
    boleto_code = db.Column(db.String(120))
    boleto_expires_at = db.Column(db.DateTime)

    approved_at = db.Column(db.DateTime)

    # falhas de cobrança
    failure_attempts = db.Column(db.Integer, nullable=False, default=0)
    last_failure_at = db.Column(db.DateTime)
    gateway_error_code = db.Column(db.String(120))

    # lembretes de falha de cobrança recorrente (0..3)
    reminders_sent = db.Column(db.Integer, nullable=False, default=0)
    last_reminder_at = db.Column(db.DateTime)

    # marca d'água da conciliação: última cobrança já aplicada ao vencimento
    last_synced_charge_id = db.Column(db.String(120))
    last_synced_charge_at = db.Column(db.DateTime)
    synced_charge_ids = db.Column(db.JSON, default=list)  # ids de cobranças já aplicadas
    pending_since = db.Column(db.DateTime)                # primeira leitura "pending" no gateway
    last_reconciled_at = db.Column(db.DateTime, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    plan = db.relationship("Plan")

    @property
    def recurring_ref(self) -> str | None:
        return self.stripe_subscription_id or self.mercadopago_preapproval_id

    @property
    def gateway_ref(self) -> tuple[str, str, str] | None:
        """(gateway, tipo, id) da referência que a conciliação deve consultar."""
        if self.stripe_subscription_id:
            return ("stripe", "subscription", self.stripe_subscription_id)
        if self.mercadopago_preapproval_id:
            return ("mercadopago", "subscription", self.mercadopago_preapproval_id)
        if self.mercadopago_payment_id:
            return ("mercadopago", "payment", self.mercadopago_payment_id)
        if self.stripe_payment_intent_id:
            return ("stripe", "payment", self.stripe_payment_intent_id)
        return None
