# assinaturas_app/services/payment_errors.py
# -*- coding: utf-8 -*-
"""
Mensagens amigáveis para códigos de recusa dos gateways.

Mercado Pago: ``status_detail``; Stripe: ``decline_code``. Código ausente ou
desconhecido cai na mensagem padrão do gateway.
"""
from __future__ import annotations

from typing import NamedTuple

from flask import current_app


class ErrorMessage(NamedTuple):
    message: str
    action: str
    retryable: bool


_E = ErrorMessage

MERCADOPAGO_ERRORS: dict[str, ErrorMessage] = {
    "cc_rejected_bad_filled_card_number": _E("O número do cartão está incorreto.",
                                             "Verifique o número do cartão e tente novamente.", True),
    "cc_rejected_bad_filled_date": _E("A data de validade está incorreta.",
                                      "Verifique a data de validade do seu cartão e tente novamente.", True),
    "cc_rejected_bad_filled_other": _E("Alguns dados do cartão estão incorretos.",
                                       "Revise os dados do cartão e tente novamente.", True),
    "cc_rejected_bad_filled_security_code": _E("O código de segurança (CVV) está incorreto.",
                                               "Verifique o código no verso do cartão e tente novamente.", True),
    "cc_rejected_blacklist": _E("O cartão não pode ser processado por motivos de segurança.",
                                "Utilize outro cartão ou método de pagamento.", False),
    "cc_rejected_call_for_authorize": _E("Seu cartão requer autorização prévia para esta compra.",
                                         "Fale com seu banco para autorizar o pagamento e tente novamente.", True),
    "cc_rejected_card_disabled": _E("Seu cartão está desabilitado para compras online.",
                                    "Fale com seu banco para habilitar compras online ou use outro cartão.", True),
    "cc_rejected_card_error": _E("Houve um erro ao processar o cartão.",
                                 "Tente novamente ou use outro cartão.", True),
    "cc_rejected_duplicated_payment": _E("Pagamento duplicado detectado.",
                                         "Aguarde alguns minutos antes de tentar novamente.", False),
    "cc_rejected_high_risk": _E("O pagamento foi recusado por medidas de segurança.",
                                "Utilize outro cartão ou pague com PIX.", False),
    "cc_rejected_insufficient_amount": _E("Seu cartão não possui limite suficiente.",
                                          "Verifique seu limite disponível ou use outro cartão.", True),
    "cc_rejected_invalid_installments": _E("O número de parcelas selecionado não é permitido.",
                                           "Escolha um número diferente de parcelas.", True),
    "cc_rejected_max_attempts": _E("Número máximo de tentativas excedido.",
                                   "Aguarde alguns minutos ou use outro cartão.", True),
    "cc_rejected_other_reason": _E("O pagamento foi recusado pelo banco emissor.",
                                   "Fale com seu banco ou tente com outro cartão.", True),
    "pending_contingency": _E("O pagamento está sendo processado.",
                              "Aguarde a confirmação por e-mail.", False),
    "pending_review_manual": _E("O pagamento está em análise.",
                                "Aguarde a análise; o resultado chega por e-mail.", False),
    "rejected_by_bank": _E("O pagamento foi recusado pelo banco.",
                           "Fale com seu banco ou use outro método de pagamento.", True),
    "rejected_by_regulations": _E("O pagamento não pôde ser processado por questões regulatórias.",
                                  "Use outro método de pagamento.", False),
    "rejected_insufficient_data": _E("Dados insuficientes para processar o pagamento.",
                                     "Verifique os dados e tente novamente.", True),
}
MERCADOPAGO_DEFAULT = _E("Não foi possível processar o pagamento.",
                         "Tente novamente ou use outro método de pagamento.", True)

STRIPE_ERRORS: dict[str, ErrorMessage] = {
    "authentication_required": _E("Autenticação adicional necessária.",
                                  "Complete a autenticação 3D Secure solicitada pelo seu banco.", True),
    "approve_with_id": _E("O pagamento requer aprovação adicional.",
                          "Fale com seu banco para aprovar a transação.", True),
    "call_issuer": _E("Seu cartão foi recusado.", "Fale com seu banco para mais informações.", True),
    "card_not_supported": _E("Este tipo de cartão não é aceito.", "Use um cartão diferente.", False),
    "card_velocity_exceeded": _E("Limite de transações excedido.",
                                 "Aguarde algumas horas ou use outro cartão.", True),
    "currency_not_supported": _E("A moeda não é suportada por este cartão.", "Use outro cartão.", False),
    "do_not_honor": _E("O cartão foi recusado.", "Fale com seu banco ou use outro cartão.", True),
    "do_not_try_again": _E("O cartão foi recusado permanentemente.", "Use um cartão diferente.", False),
    "duplicate_transaction": _E("Transação duplicada detectada.",
                                "Aguarde alguns minutos antes de tentar novamente.", False),
    "expired_card": _E("O cartão está vencido.", "Use um cartão válido.", False),
    "fraudulent": _E("O pagamento foi identificado como suspeito.", "Use outro método de pagamento.", False),
    "generic_decline": _E("O cartão foi recusado.", "Fale com seu banco ou tente outro cartão.", True),
    "incorrect_cvc": _E("O código de segurança (CVC) está incorreto.",
                        "Verifique o código no verso do cartão e tente novamente.", True),
    "incorrect_number": _E("O número do cartão está incorreto.",
                           "Verifique o número do cartão e tente novamente.", True),
    "incorrect_zip": _E("O CEP está incorreto.", "Verifique o CEP e tente novamente.", True),
    "insufficient_funds": _E("Saldo insuficiente.", "Verifique seu limite disponível ou use outro cartão.", True),
    "invalid_account": _E("A conta do cartão é inválida.", "Use outro cartão.", False),
    "invalid_amount": _E("O valor é inválido para este cartão.", "Fale com seu banco.", True),
    "invalid_cvc": _E("O código de segurança (CVC) é inválido.", "Verifique o código no verso do cartão.", True),
    "invalid_expiry_month": _E("O mês de validade é inválido.", "Verifique a data de validade do cartão.", True),
    "invalid_expiry_year": _E("O ano de validade é inválido.", "Verifique a data de validade do cartão.", True),
    "invalid_number": _E("O número do cartão é inválido.", "Verifique o número do cartão.", True),
    "issuer_not_available": _E("O banco emissor está indisponível.", "Tente novamente em alguns minutos.", True),
    "lost_card": _E("O cartão foi reportado como perdido.", "Use outro cartão.", False),
    "merchant_blacklist": _E("O cartão não pode ser usado nesta loja.", "Use outro cartão.", False),
    "no_action_taken": _E("Nenhuma ação foi tomada pelo banco.", "Fale com seu banco.", True),
    "not_permitted": _E("Este tipo de transação não é permitido.", "Fale com seu banco ou use outro cartão.", True),
    "pickup_card": _E("O cartão foi bloqueado.", "Fale com seu banco.", False),
    "processing_error": _E("Erro de processamento.", "Tente novamente em alguns segundos.", True),
    "restricted_card": _E("O cartão tem restrições.", "Fale com seu banco ou use outro cartão.", False),
    "security_violation": _E("Violação de segurança detectada.", "Use outro método de pagamento.", False),
    "stolen_card": _E("O cartão foi reportado como roubado.", "Use outro cartão.", False),
    "stop_payment_order": _E("Ordem de suspensão de pagamento.", "Fale com seu banco.", False),
    "transaction_not_allowed": _E("Transação não permitida.", "Fale com seu banco.", True),
    "try_again_later": _E("Tente novamente mais tarde.", "Aguarde alguns minutos e tente novamente.", True),
}
STRIPE_DEFAULT = _E("O pagamento foi recusado.", "Tente novamente ou use outro cartão.", True)

_CATALOG = {
    "mercadopago": (MERCADOPAGO_ERRORS, MERCADOPAGO_DEFAULT),
    "stripe": (STRIPE_ERRORS, STRIPE_DEFAULT),
}


def friendly_error(gateway: str, code: str | None) -> ErrorMessage:
    table, default = _CATALOG.get(gateway, _CATALOG["mercadopago"])
    if not code:
        return default
    return table.get(code, default)


def log_payment_failure(*, gateway: str, payment_id, email: str, amount_cents: int,
                        method: str, code: str | None, reason: str | None = None) -> None:
    current_app.logger.error(
        "[PAYMENT_DECLINED] gateway=%s payment=%s email=%s valor=R$ %.2f metodo=%s codigo=%s motivo=%s",
        gateway, payment_id, email, (amount_cents or 0) / 100, method, code or "-",
        reason or friendly_error(gateway, code).message,
    )
