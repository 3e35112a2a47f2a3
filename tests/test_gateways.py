# tests/test_gateways.py
from datetime import datetime, timezone

import pytest
import requests
import stripe

from assinaturas_app.services.gateways import (
    APPROVED, AUTHORIZED, CANCELLED, PAUSED, PENDING, REJECTED,
    GatewayError, MercadoPagoGateway, StripeGateway, Throttle, build_gateways,
)
from assinaturas_app.services.gateways.base import parse_datetime

MAR_14 = datetime(2026, 3, 14, 10, 0)
MAR_14_EPOCH = int(MAR_14.replace(tzinfo=timezone.utc).timestamp())


# ---------------- utilitários ----------------
def test_throttle_pauses_every_n_calls():
    pauses = []
    t = Throttle(every=3, pause=0.5, sleep=pauses.append)
    for _ in range(7):
        t.tick()
    assert t.count == 7
    assert pauses == [0.5, 0.5]


def test_parse_datetime_normalizes_to_naive_utc():
    assert parse_datetime("2026-03-14T07:00:00.000-03:00") == MAR_14
    assert parse_datetime("2026-03-14T10:00:00") == MAR_14
    assert parse_datetime(None) is None


def test_build_gateways_reads_config():
    gws = build_gateways({"STRIPE_SECRET_KEY": "sk_x", "MERCADOPAGO_ACCESS_TOKEN": ""})
    assert gws["stripe"].is_configured() is True
    assert gws["mercadopago"].is_configured() is False


# ---------------- Mercado Pago ----------------
@pytest.fixture
def mp():
    return MercadoPagoGateway("TEST-token", api_url="https://mp.test")


def _route_get(monkeypatch, resp_factory, routes):
    seen = []

    def fake_get(url, params=None, headers=None, timeout=None):
        seen.append((url, params))
        path = url.replace("https://mp.test", "")
        if path not in routes:
            return resp_factory(404, {})
        return resp_factory(200, routes[path])

    monkeypatch.setattr(requests, "get", fake_get)
    return seen


def test_mp_subscription_with_approved_charges(monkeypatch, resp_factory, mp):
    _route_get(monkeypatch, resp_factory, {
        "/preapproval/pre_1": {"id": "pre_1", "status": "authorized"},
        "/authorized_payments/search": {"results": [
            {"id": 1, "transaction_amount": 97.0, "debit_date": "2026-02-14T07:00:00.000-03:00",
             "last_modified": "2026-03-20T09:00:00.000-03:00",
             "payment": {"id": 111, "status": "approved"}},
            {"id": 2, "transaction_amount": 97.0, "debit_date": "2026-03-14T06:00:00.000-03:00",
             "last_modified": "2026-03-20T09:00:00.000-03:00",
             "payment": {"id": 222, "status": "approved", "date_approved": "2026-03-14T07:00:00.000-03:00"}},
        ]},
    })
    snap = mp.fetch_subscription("pre_1")
    assert snap.status == AUTHORIZED and snap.kind == "subscription"
    assert [c.id for c in snap.approved_charges] == ["111", "222"]
    # data da aprovação, não a última modificação do registro
    assert snap.approved_charges[0].approved_at == datetime(2026, 2, 14, 10, 0)
    assert snap.approved_charges[-1].approved_at == MAR_14
    assert snap.approved_charges[-1].amount_cents == 9700


def test_mp_authorized_but_last_charge_rejected(monkeypatch, resp_factory, mp):
    _route_get(monkeypatch, resp_factory, {
        "/preapproval/pre_1": {"status": "authorized"},
        "/authorized_payments/search": {"results": [
            {"debit_date": "2026-02-14T07:00:00.000-03:00", "payment": {"id": 1, "status": "approved"}},
            {"debit_date": "2026-03-14T07:00:00.000-03:00",
             "payment": {"id": 2, "status": "rejected", "status_detail": "cc_rejected_insufficient_amount"}},
        ]},
    })
    snap = mp.fetch_subscription("pre_1")
    assert snap.status == REJECTED
    assert snap.detail == "cc_rejected_insufficient_amount"


@pytest.mark.parametrize("raw,expected", [("paused", PAUSED), ("cancelled", CANCELLED), ("pending", PENDING)])
def test_mp_preapproval_status_mapping(monkeypatch, resp_factory, mp, raw, expected):
    _route_get(monkeypatch, resp_factory, {
        "/preapproval/pre_1": {"status": raw},
        "/authorized_payments/search": {"results": []},
    })
    assert mp.fetch_subscription("pre_1").status == expected


def test_mp_http_error_and_unknown_status_raise(monkeypatch, resp_factory, mp):
    _route_get(monkeypatch, resp_factory, {"/preapproval/pre_2": {"status": "weird"}})
    with pytest.raises(GatewayError):
        mp.fetch_subscription("missing")
    with pytest.raises(GatewayError):
        mp.fetch_subscription("pre_2")


def test_mp_timeout_becomes_gateway_error(monkeypatch, mp):
    def boom(*a, **k):
        raise requests.Timeout("slow")

    monkeypatch.setattr(requests, "get", boom)
    with pytest.raises(GatewayError):
        mp.fetch_payment("123")


def test_mp_one_time_payment(monkeypatch, resp_factory, mp):
    _route_get(monkeypatch, resp_factory, {
        "/v1/payments/123": {"id": 123, "status": "approved", "transaction_amount": 97.0,
                             "date_approved": "2026-03-14T07:00:00.000-03:00"},
    })
    snap = mp.fetch_payment("123")
    assert snap.status == APPROVED
    assert snap.charges[0].approved_at == MAR_14


def test_mp_has_active_subscription(monkeypatch, resp_factory, mp):
    seen = _route_get(monkeypatch, resp_factory, {
        "/preapproval/search": {"results": [{"status": "cancelled"}, {"status": "authorized"}]},
    })
    assert mp.has_active_subscription("ana@test.com") is True
    assert seen[0][1] == {"payer_email": "ana@test.com"}


def test_mp_create_pix_sends_idempotency_key(monkeypatch, resp_factory, mp):
    captured = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        captured.update(url=url, json=json, headers=headers)
        return resp_factory(201, {
            "id": 999,
            "date_of_expiration": "2026-03-14T07:30:00.000-03:00",
            "point_of_interaction": {"transaction_data": {"qr_code": "000201PIX", "qr_code_base64": "iVBOR"}},
        })

    monkeypatch.setattr(requests, "post", fake_post)
    pix = mp.create_pix(amount_cents=9700, email="ana@test.com", name="Ana", description="Renovação",
                        expires_minutes=30, reference="42", idempotency_key="renewal-42-pix")
    assert captured["url"] == "https://mp.test/v1/payments"
    assert captured["headers"]["X-Idempotency-Key"] == "renewal-42-pix"
    assert captured["json"]["transaction_amount"] == 97.0
    assert captured["json"]["payment_method_id"] == "pix"
    assert pix.gateway_id == "999" and pix.code == "000201PIX"
    assert pix.image == "data:image/png;base64,iVBOR"
    assert pix.expires_at == datetime(2026, 3, 14, 10, 30)


def test_mp_create_boleto_sends_cpf_digits(monkeypatch, resp_factory, mp):
    captured = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        captured.update(json=json)
        return resp_factory(201, {
            "id": 1000,
            "transaction_details": {"external_resource_url": "https://mp.test/boleto/1000"},
            "barcode": {"content": "2379000000"},
        })

    monkeypatch.setattr(requests, "post", fake_post)
    boleto = mp.create_boleto(amount_cents=9700, email="ana@test.com", name="Ana Souza",
                              document="123.456.789-09", description="Renovação", expires_days=3,
                              reference="42", idempotency_key="renewal-42-boleto")
    payer = captured["json"]["payer"]
    assert payer["identification"] == {"type": "CPF", "number": "12345678909"}
    assert payer["first_name"] == "Ana" and payer["last_name"] == "Souza"
    assert boleto.url == "https://mp.test/boleto/1000" and boleto.code == "2379000000"


# ---------------- Stripe ----------------
@pytest.fixture
def sg():
    return StripeGateway("sk_test_123")


def test_stripe_subscription_with_paid_invoices(monkeypatch, sg):
    monkeypatch.setattr(stripe.Subscription, "retrieve", lambda ref, **kw: {"id": ref, "status": "active"})
    monkeypatch.setattr(stripe.Invoice, "list", lambda **kw: {"data": [
        {"id": "in_2", "amount_paid": 9700, "status_transitions": {"paid_at": MAR_14_EPOCH}},
        {"id": "in_open", "amount_paid": 0, "status_transitions": {"paid_at": None}},
    ]})
    snap = sg.fetch_subscription("sub_1")
    assert snap.status == AUTHORIZED
    assert [(c.id, c.approved_at) for c in snap.charges] == [("in_2", MAR_14)]


@pytest.mark.parametrize("raw,expected", [
    ("past_due", REJECTED), ("canceled", CANCELLED), ("paused", PAUSED), ("incomplete", PENDING),
])
def test_stripe_subscription_status_mapping(monkeypatch, sg, raw, expected):
    monkeypatch.setattr(stripe.Subscription, "retrieve", lambda ref, **kw: {"status": raw})
    monkeypatch.setattr(stripe.Invoice, "list", lambda **kw: {"data": []})
    assert sg.fetch_subscription("sub_1").status == expected


def test_stripe_errors_become_gateway_errors(monkeypatch, sg):
    def boom(ref, **kw):
        raise stripe.StripeError("rate limited")

    monkeypatch.setattr(stripe.Subscription, "retrieve", boom)
    with pytest.raises(GatewayError):
        sg.fetch_subscription("sub_1")


def test_stripe_declined_intent_is_rejected(monkeypatch, sg):
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", lambda ref, **kw: {
        "id": ref, "status": "requires_payment_method",
        "last_payment_error": {"code": "card_declined", "decline_code": "insufficient_funds"},
    })
    snap = sg.fetch_payment("pi_1")
    assert snap.status == REJECTED and snap.detail == "insufficient_funds"


def test_stripe_create_pix_confirms_with_derived_key(monkeypatch, sg):
    calls = []

    def create(**kw):
        calls.append(("create", kw))
        return {"id": "pi_pix"}

    def confirm(intent_id, **kw):
        calls.append(("confirm", kw))
        return {"id": intent_id, "next_action": {"pix_display_qr_code": {
            "data": "000201STRIPE", "image_url_png": "https://stripe.test/qr.png", "expires_at": MAR_14_EPOCH,
        }}}

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)
    monkeypatch.setattr(stripe.PaymentIntent, "confirm", confirm)
    pix = sg.create_pix(amount_cents=9700, email="ana@test.com", name="Ana", description="Renovação",
                        expires_minutes=30, reference="42", idempotency_key="renewal-42-pix")

    assert calls[0][1]["idempotency_key"] == "renewal-42-pix"
    assert calls[0][1]["payment_method_options"] == {"pix": {"expires_after_seconds": 1800}}
    assert calls[1][1]["idempotency_key"] == "renewal-42-pix-confirm"
    assert pix.gateway_id == "pi_pix" and pix.code == "000201STRIPE"
    assert pix.expires_at == MAR_14


def test_stripe_has_active_subscription(monkeypatch, sg):
    monkeypatch.setattr(stripe.Customer, "list", lambda **kw: {"data": [{"id": "cus_1"}]})
    monkeypatch.setattr(stripe.Subscription, "list", lambda **kw: {"data": [{"status": "canceled"}]})
    assert sg.has_active_subscription("ana@test.com") is False
    monkeypatch.setattr(stripe.Subscription, "list", lambda **kw: {"data": [{"status": "past_due"}]})
    assert sg.has_active_subscription("ana@test.com") is True


def test_stripe_succeeded_intent_uses_charge_paid_time(monkeypatch, sg):
    seen = {}

    def retrieve(ref, **kw):
        seen.update(kw)
        return {
            "id": ref, "status": "succeeded", "amount_received": 9700,
            "created": MAR_14_EPOCH - 2 * 86400,   # intent criado dois dias antes do pagamento
            "latest_charge": {"id": "ch_1", "paid": True, "created": MAR_14_EPOCH},
        }

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", retrieve)
    snap = sg.fetch_payment("pi_1")
    assert seen["expand"] == ["latest_charge"]
    assert snap.status == APPROVED
    assert snap.charges[0].approved_at == MAR_14
    assert snap.charges[0].amount_cents == 9700
