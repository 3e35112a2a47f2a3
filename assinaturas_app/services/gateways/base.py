# assinaturas_app/services/gateways/base.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from dateutil.parser import isoparse

# status normalizados devolvidos pelos gateways
AUTHORIZED = "authorized"   # assinatura ativa
APPROVED = "approved"       # pagamento avulso aprovado
PAUSED = "paused"
CANCELLED = "cancelled"
PENDING = "pending"
REJECTED = "rejected"


class GatewayError(Exception):
    """Falha de comunicação ou resposta malformada de um gateway."""

    def __init__(self, gateway: str, message: str, status_code: int | None = None):
        super().__init__(f"[{gateway}] {message}")
        self.gateway = gateway
        self.status_code = status_code


@dataclass(frozen=True)
class Charge:
    id: str
    approved_at: datetime
    amount_cents: int | None = None


@dataclass
class GatewaySnapshot:
    gateway: str
    kind: str                   # subscription | payment
    ref: str
    status: str
    charges: list[Charge] = field(default_factory=list)
    detail: str | None = None   # status_detail / decline_code do provedor

    @property
    def approved_charges(self) -> list[Charge]:
        return sorted(self.charges, key=lambda c: (c.approved_at, c.id))


@dataclass
class Instrument:
    kind: str                   # pix | boleto
    gateway_id: str
    code: str | None = None     # copia e cola / linha digitável
    image: str | None = None    # QR do PIX
    url: str | None = None      # voucher do boleto
    expires_at: datetime | None = None


class Throttle:
    """Pausa ``pause`` segundos a cada ``every`` requisições (compartilhado entre threads)."""

    def __init__(self, every: int = 5, pause: float = 1.0, sleep=time.sleep):
        self.every = every
        self.pause = pause
        self._sleep = sleep
        self._count = 0
        self._lock = threading.Lock()

    def tick(self) -> None:
        with self._lock:
            self._count += 1
            hit = self.every > 0 and self._count % self.every == 0
        if hit and self.pause > 0:
            self._sleep(self.pause)

    @property
    def count(self) -> int:
        return self._count


def from_epoch(value) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def parse_datetime(value) -> datetime | None:
    """ISO 8601 (com ou sem offset) para UTC naive."""
    if not value:
        return None
    dt = isoparse(str(value))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def only_digits(value: str | None) -> str:
    return "".join(ch for ch in (value or "") if ch.isdigit())


class PaymentGateway:
    """Contrato comum dos gateways usados na renovação e na conciliação."""

    name = "base"

    def __init__(self, throttle: Throttle | None = None, timeout: float = 20):
        self.throttle = throttle or Throttle(every=0, pause=0)
        self.timeout = timeout

    def is_configured(self) -> bool:
        raise NotImplementedError

    def create_pix(self, *, amount_cents: int, email: str, name: str, description: str,
                   expires_minutes: int, reference: str, idempotency_key: str) -> Instrument:
        raise NotImplementedError

    def create_boleto(self, *, amount_cents: int, email: str, name: str, document: str,
                      description: str, expires_days: int, reference: str,
                      idempotency_key: str) -> Instrument:
        raise NotImplementedError

    def fetch_subscription(self, ref: str) -> GatewaySnapshot:
        raise NotImplementedError

    def fetch_payment(self, ref: str) -> GatewaySnapshot:
        raise NotImplementedError

    def has_active_subscription(self, email: str) -> bool:
        raise NotImplementedError

    def fetch(self, kind: str, ref: str) -> GatewaySnapshot:
        if kind == "subscription":
            return self.fetch_subscription(ref)
        return self.fetch_payment(ref)
