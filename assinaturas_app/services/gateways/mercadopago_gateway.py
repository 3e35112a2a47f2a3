# assinaturas_app/services/gateways/mercadopago_gateway.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import datetime, timedelta

import requests

from .base import (
    APPROVED, AUTHORIZED, CANCELLED, PAUSED, PENDING, REJECTED,
    Charge, GatewayError, GatewaySnapshot, Instrument, PaymentGateway,
    only_digits, parse_datetime,
)

DEFAULT_API_URL = "https://api.mercadopago.com"

PREAPPROVAL_STATUS = {
    "authorized": AUTHORIZED,
    "paused": PAUSED,
    "cancelled": CANCELLED,
    "pending": PENDING,
}
PAYMENT_STATUS = {
    "approved": APPROVED,
    "authorized": PENDING,
    "pending": PENDING,
    "in_process": PENDING,
    "in_mediation": PENDING,
    "rejected": REJECTED,
    "cancelled": CANCELLED,
    "refunded": CANCELLED,
    "charged_back": CANCELLED,
}
LIVE_PREAPPROVAL_STATUSES = {"authorized", "pending"}


def _mp_date(dt: datetime) -> str:
    # formato aceito em date_of_expiration (UTC explícito)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.000-00:00")


class MercadoPagoGateway(PaymentGateway):
    name = "mercadopago"

    def __init__(self, access_token: str, api_url: str = DEFAULT_API_URL, **kw):
        super().__init__(**kw)
        self.access_token = access_token or ""
        self.api_url = (api_url or DEFAULT_API_URL).rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.access_token)

    def _headers(self, idempotency_key: str | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def _request(self, method: str, path: str, *, params=None, json=None, idempotency_key=None) -> dict:
        self.throttle.tick()
        url = f"{self.api_url}{path}"
        try:
            if method == "POST":
                resp = requests.post(url, json=json, headers=self._headers(idempotency_key),
                                     timeout=self.timeout)
            else:
                resp = requests.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise GatewayError(self.name, f"{method} {path}: {e}") from e

        if resp.status_code >= 400:
            raise GatewayError(self.name, f"{method} {path}: HTTP {resp.status_code}", resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise GatewayError(self.name, f"{method} {path}: resposta não é JSON") from e
        if not isinstance(data, dict):
            raise GatewayError(self.name, f"{method} {path}: resposta inesperada")
        return data

    # ---------------- instrumentos ----------------
    def create_pix(self, *, amount_cents, email, name, description, expires_minutes,
                   reference, idempotency_key) -> Instrument:
        expires_at = datetime.utcnow() + timedelta(minutes=int(expires_minutes))
        data = self._request("POST", "/v1/payments", idempotency_key=idempotency_key, json={
            "transaction_amount": round(int(amount_cents) / 100, 2),
            "description": description,
            "payment_method_id": "pix",
            "external_reference": reference,
            "date_of_expiration": _mp_date(expires_at),
            "payer": {"email": email, "first_name": name},
            "metadata": {"payment_id": reference, "auto_renewal": True},
        })
        tx = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        if not data.get("id") or not tx.get("qr_code"):
            raise GatewayError(self.name, "PIX sem point_of_interaction.transaction_data")
        image = tx.get("qr_code_base64")
        return Instrument(
            kind="pix",
            gateway_id=str(data["id"]),
            code=tx.get("qr_code"),
            image=f"data:image/png;base64,{image}" if image else None,
            expires_at=parse_datetime(data.get("date_of_expiration")) or expires_at,
        )

    def create_boleto(self, *, amount_cents, email, name, document, description,
                      expires_days, reference, idempotency_key) -> Instrument:
        expires_at = datetime.utcnow() + timedelta(days=int(expires_days))
        first, _, last = (name or "").partition(" ")
        data = self._request("POST", "/v1/payments", idempotency_key=idempotency_key, json={
            "transaction_amount": round(int(amount_cents) / 100, 2),
            "description": description,
            "payment_method_id": "bolbradesco",
            "external_reference": reference,
            "date_of_expiration": _mp_date(expires_at),
            "payer": {
                "email": email,
                "first_name": first or name,
                "last_name": last or first or name,
                "identification": {"type": "CPF", "number": only_digits(document)},
            },
            "metadata": {"payment_id": reference, "auto_renewal": True},
        })
        url = (data.get("transaction_details") or {}).get("external_resource_url")
        if not data.get("id") or not url:
            raise GatewayError(self.name, "Boleto sem transaction_details.external_resource_url")
        return Instrument(
            kind="boleto",
            gateway_id=str(data["id"]),
            code=(data.get("barcode") or {}).get("content"),
            url=url,
            expires_at=parse_datetime(data.get("date_of_expiration")) or expires_at,
        )

    # ---------------- consultas ----------------
    def fetch_subscription(self, ref: str) -> GatewaySnapshot:
        pre = self._request("GET", f"/preapproval/{ref}")
        raw_status = pre.get("status")
        if raw_status not in PREAPPROVAL_STATUS:
            raise GatewayError(self.name, f"status de preapproval desconhecido: {raw_status!r}")

        found = self._request("GET", "/authorized_payments/search", params={"preapproval_id": ref})
        charges = []
        last_rejection = None
        for item in found.get("results") or []:
            payment = item.get("payment") or {}
            # last_modified muda a cada toque no registro; não serve como data da cobrança
            when = parse_datetime(
                payment.get("date_approved") or item.get("debit_date") or item.get("date_created")
            )
            if when is None:
                continue
            if payment.get("status") == "approved":
                charges.append(Charge(
                    id=str(payment.get("id") or item.get("id")),
                    approved_at=when,
                    amount_cents=int(round(float(item.get("transaction_amount") or 0) * 100)) or None,
                ))
            elif payment.get("status") == "rejected":
                if last_rejection is None or when > last_rejection[0]:
                    last_rejection = (when, payment.get("status_detail") or "rejected")

        status = PREAPPROVAL_STATUS[raw_status]
        detail = raw_status
        # assinatura ainda autorizada mas a última cobrança recusou
        if status == AUTHORIZED and last_rejection:
            newest_ok = max((c.approved_at for c in charges), default=None)
            if newest_ok is None or last_rejection[0] > newest_ok:
                status = REJECTED
                detail = last_rejection[1]

        return GatewaySnapshot(gateway=self.name, kind="subscription", ref=ref,
                               status=status, charges=charges, detail=detail)

    def fetch_payment(self, ref: str) -> GatewaySnapshot:
        data = self._request("GET", f"/v1/payments/{ref}")
        raw_status = data.get("status")
        if raw_status not in PAYMENT_STATUS:
            raise GatewayError(self.name, f"status de pagamento desconhecido: {raw_status!r}")
        status = PAYMENT_STATUS[raw_status]
        charges = []
        if status == APPROVED:
            approved_at = parse_datetime(data.get("date_approved") or data.get("date_created"))
            amount = data.get("transaction_amount")
            charges.append(Charge(
                id=str(data.get("id") or ref),
                approved_at=approved_at,
                amount_cents=int(round(float(amount) * 100)) if amount is not None else None,
            ))
        return GatewaySnapshot(gateway=self.name, kind="payment", ref=ref, status=status,
                               charges=charges, detail=data.get("status_detail") or raw_status)

    def has_active_subscription(self, email: str) -> bool:
        data = self._request("GET", "/preapproval/search", params={"payer_email": email})
        return any(
            (item.get("status") in LIVE_PREAPPROVAL_STATUSES)
            for item in data.get("results") or []
        )
