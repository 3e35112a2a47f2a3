# assinaturas_app/services/gateways/stripe_gateway.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import datetime, timedelta

import stripe

from .base import (
    APPROVED, AUTHORIZED, CANCELLED, PAUSED, PENDING, REJECTED,
    Charge, GatewayError, GatewaySnapshot, Instrument, PaymentGateway,
    from_epoch, only_digits,
)

# status de Subscription na Stripe -> status normalizado
SUBSCRIPTION_STATUS = {
    "active": AUTHORIZED,
    "trialing": AUTHORIZED,
    "paused": PAUSED,
    "canceled": CANCELLED,
    "incomplete_expired": CANCELLED,
    "past_due": REJECTED,
    "unpaid": REJECTED,
    "incomplete": PENDING,
}
# assinaturas que vão se renovar sozinhas (não gerar PIX/boleto concorrente)
LIVE_SUBSCRIPTION_STATUSES = {"active", "trialing", "past_due", "incomplete"}


class StripeGateway(PaymentGateway):
    name = "stripe"

    def __init__(self, secret_key: str, **kw):
        super().__init__(**kw)
        self.secret_key = secret_key or ""

    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def _stripe(self):
        stripe.api_key = self.secret_key
        self.throttle.tick()
        return stripe

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except stripe.StripeError as e:
            raise GatewayError(self.name, str(e), getattr(e, "http_status", None)) from e

    # ---------------- instrumentos ----------------
    def create_pix(self, *, amount_cents, email, name, description, expires_minutes,
                   reference, idempotency_key) -> Instrument:
        s = self._stripe()
        intent = self._call(
            s.PaymentIntent.create,
            amount=int(amount_cents),
            currency="brl",
            payment_method_types=["pix"],
            payment_method_options={"pix": {"expires_after_seconds": int(expires_minutes) * 60}},
            receipt_email=email,
            description=description,
            metadata={"payment_id": reference, "auto_renewal": "true"},
            idempotency_key=idempotency_key,
        )
        confirmed = self._call(
            s.PaymentIntent.confirm,
            intent["id"],
            payment_method_data={"type": "pix"},
            idempotency_key=f"{idempotency_key}-confirm",
        )
        action = (confirmed.get("next_action") or {}).get("pix_display_qr_code")
        if not action or not action.get("data"):
            raise GatewayError(self.name, "PIX sem next_action.pix_display_qr_code")
        expires_at = from_epoch(action.get("expires_at")) or (
            datetime.utcnow() + timedelta(minutes=int(expires_minutes))
        )
        return Instrument(
            kind="pix",
            gateway_id=intent["id"],
            code=action.get("data"),
            image=action.get("image_url_png"),
            expires_at=expires_at,
        )

    def create_boleto(self, *, amount_cents, email, name, document, description,
                      expires_days, reference, idempotency_key) -> Instrument:
        s = self._stripe()
        intent = self._call(
            s.PaymentIntent.create,
            amount=int(amount_cents),
            currency="brl",
            payment_method_types=["boleto"],
            payment_method_options={"boleto": {"expires_after_days": int(expires_days)}},
            receipt_email=email,
            description=description,
            metadata={"payment_id": reference, "auto_renewal": "true"},
            idempotency_key=idempotency_key,
        )
        confirmed = self._call(
            s.PaymentIntent.confirm,
            intent["id"],
            payment_method_data={
                "type": "boleto",
                "billing_details": {"email": email, "name": name},
                "boleto": {"tax_id": only_digits(document)},
            },
            idempotency_key=f"{idempotency_key}-confirm",
        )
        action = (confirmed.get("next_action") or {}).get("boleto_display_details")
        if not action or not action.get("hosted_voucher_url"):
            raise GatewayError(self.name, "Boleto sem next_action.boleto_display_details")
        expires_at = from_epoch(action.get("expires_at")) or (
            datetime.utcnow() + timedelta(days=int(expires_days))
        )
        return Instrument(
            kind="boleto",
            gateway_id=intent["id"],
            code=action.get("number"),
            url=action.get("hosted_voucher_url"),
            expires_at=expires_at,
        )

    # ---------------- consultas ----------------
    def fetch_subscription(self, ref: str) -> GatewaySnapshot:
        s = self._stripe()
        sub = self._call(s.Subscription.retrieve, ref)
        raw_status = sub.get("status")
        if raw_status not in SUBSCRIPTION_STATUS:
            raise GatewayError(self.name, f"status de assinatura desconhecido: {raw_status!r}")

        self.throttle.tick()
        invoices = self._call(s.Invoice.list, subscription=ref, status="paid", limit=10)
        charges = []
        for inv in invoices.get("data") or []:
            paid_at = from_epoch((inv.get("status_transitions") or {}).get("paid_at"))
            if paid_at is None:
                continue
            charges.append(Charge(id=inv["id"], approved_at=paid_at, amount_cents=inv.get("amount_paid")))

        return GatewaySnapshot(
            gateway=self.name,
            kind="subscription",
            ref=ref,
            status=SUBSCRIPTION_STATUS[raw_status],
            charges=charges,
            detail=raw_status,
        )

    @staticmethod
    def _paid_at(intent) -> datetime | None:
        """Momento em que a cobrança do intent foi paga (cai na criação do intent)."""
        charge = intent.get("latest_charge")
        if isinstance(charge, dict) and charge.get("paid"):
            return from_epoch(charge.get("created"))
        return from_epoch(intent.get("created"))

    def fetch_payment(self, ref: str) -> GatewaySnapshot:
        s = self._stripe()
        intent = self._call(s.PaymentIntent.retrieve, ref, expand=["latest_charge"])
        raw_status = intent.get("status")
        charges = []
        detail = raw_status
        if raw_status == "succeeded":
            status = APPROVED
            charges.append(Charge(id=intent["id"], approved_at=self._paid_at(intent),
                                  amount_cents=intent.get("amount_received") or intent.get("amount")))
        elif raw_status == "canceled":
            status = CANCELLED
        elif raw_status == "requires_payment_method" and intent.get("last_payment_error"):
            status = REJECTED
            err = intent.get("last_payment_error") or {}
            detail = err.get("decline_code") or err.get("code") or raw_status
        elif raw_status:
            status = PENDING
        else:
            raise GatewayError(self.name, "PaymentIntent sem status")
        return GatewaySnapshot(gateway=self.name, kind="payment", ref=ref, status=status,
                               charges=charges, detail=detail)

    def has_active_subscription(self, email: str) -> bool:
        s = self._stripe()
        customers = self._call(s.Customer.list, email=email, limit=10)
        for cust in customers.get("data") or []:
            self.throttle.tick()
            subs = self._call(s.Subscription.list, customer=cust["id"], status="all", limit=10)
            for sub in subs.get("data") or []:
                if sub.get("status") in LIVE_SUBSCRIPTION_STATUSES:
                    return True
        return False
