# assinaturas_app/services/gateways/__init__.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from flask import current_app

from .base import (
    APPROVED, AUTHORIZED, CANCELLED, PAUSED, PENDING, REJECTED,
    Charge, GatewayError, GatewaySnapshot, Instrument, PaymentGateway, Throttle,
)
from .mercadopago_gateway import MercadoPagoGateway
from .stripe_gateway import StripeGateway


def build_gateways(config, throttle: Throttle | None = None) -> dict[str, PaymentGateway]:
    """Instancia os dois gateways a partir de um dict de config.

    As instâncias não dependem de app context; podem ser usadas em threads.
    """
    throttle = throttle or Throttle(
        every=int(config.get("GATEWAY_THROTTLE_EVERY", 5)),
        pause=float(config.get("GATEWAY_THROTTLE_SECONDS", 1.0)),
    )
    timeout = float(config.get("GATEWAY_TIMEOUT_SECONDS", 20))
    return {
        "stripe": StripeGateway(
            config.get("STRIPE_SECRET_KEY", ""), throttle=throttle, timeout=timeout,
        ),
        "mercadopago": MercadoPagoGateway(
            config.get("MERCADOPAGO_ACCESS_TOKEN", ""),
            api_url=config.get("MERCADOPAGO_API_URL"),
            throttle=throttle, timeout=timeout,
        ),
    }


def get_gateways() -> dict[str, PaymentGateway]:
    factory = current_app.extensions.get("gateway_factory", build_gateways)
    return factory(current_app.config)


def get_gateway(name: str) -> PaymentGateway | None:
    return get_gateways().get(name)


__all__ = [
    "APPROVED", "AUTHORIZED", "CANCELLED", "PAUSED", "PENDING", "REJECTED",
    "Charge", "GatewayError", "GatewaySnapshot", "Instrument", "PaymentGateway", "Throttle",
    "MercadoPagoGateway", "StripeGateway", "build_gateways", "get_gateways", "get_gateway",
]
