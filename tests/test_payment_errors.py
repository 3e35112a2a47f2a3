# tests/test_payment_errors.py
import logging

from assinaturas_app.services.payment_errors import (
    MERCADOPAGO_DEFAULT, STRIPE_DEFAULT, friendly_error, log_payment_failure,
)


def test_known_codes_map_to_portuguese_messages():
    err = friendly_error("mercadopago", "cc_rejected_insufficient_amount")
    assert "saldo" in err.message.lower() or "limite" in err.message.lower()
    assert err.retryable is True

    stolen = friendly_error("stripe", "stolen_card")
    assert stolen.retryable is False


def test_unknown_or_missing_codes_fall_back_to_gateway_default():
    assert friendly_error("stripe", "nao_existe") == STRIPE_DEFAULT
    assert friendly_error("stripe", None) == STRIPE_DEFAULT
    assert friendly_error("mercadopago", "") == MERCADOPAGO_DEFAULT


def test_unknown_gateway_uses_mercadopago_table():
    assert friendly_error("pagseguro", "cc_rejected_insufficient_amount") == \
        friendly_error("mercadopago", "cc_rejected_insufficient_amount")


def test_log_payment_failure_has_searchable_prefix(app, caplog):
    with app.app_context(), caplog.at_level(logging.ERROR):
        log_payment_failure(gateway="stripe", payment_id=7, email="ana@test.com", amount_cents=9700,
                            method="credit_card", code="expired_card")
    assert "[PAYMENT_DECLINED]" in caplog.text
    assert "R$ 97.00" in caplog.text
    assert "vencido" in caplog.text
