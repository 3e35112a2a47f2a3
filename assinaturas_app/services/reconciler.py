# assinaturas_app/services/reconciler.py
# -*- coding: utf-8 -*-
"""
Conciliação periódica com Stripe e Mercado Pago.

Recupera webhooks perdidos relendo o estado nos gateways. A regra central é
a extensão monotônica: cada cobrança aprovada é aplicada uma única vez
(marca d'água ``last_synced_charge_at`` no Payment) sobre
``max(vencimento atual, data de aprovação)``, então reprocessar o mesmo
retrato do gateway não muda nada e leituras atrasadas nunca encurtam o
acesso. Só pausa/cancelamento explícito traz o vencimento para ``now``.

As consultas HTTP rodam num pool limitado de threads (sem acesso ao banco);
as escritas acontecem em sequência, dentro do app context do job.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import and_, or_, update

from ..extensions import db
from ..models import Payment, Tenant
from ..models.payment import ONE_TIME_TERMINAL_STATUSES
from .gateways import (
    APPROVED, AUTHORIZED, CANCELLED, PAUSED, PENDING, REJECTED,
    GatewayError, GatewaySnapshot, get_gateways,
)
from .payment_errors import friendly_error
from .plans import calculate_expiration, get_plan

# ids de cobranças guardados por pagamento
APPLIED_CHARGES_KEPT = 36


@dataclass
class ReconcileReport:
    checked: int = 0
    payments_updated: int = 0
    tenants_updated: int = 0
    extensions: int = 0
    errors: int = 0
    skipped: int = 0
    error_refs: list = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "checked": self.checked,
            "payments_updated": self.payments_updated,
            "tenants_updated": self.tenants_updated,
            "extensions": self.extensions,
            "errors": self.errors,
            "skipped": self.skipped,
        }


def reconcile_candidates(now: datetime) -> list[Payment]:
    """Pagamentos com referência em gateway que ainda podem mudar.

    Assinaturas não canceladas são sempre candidatas (novas cobranças do
    ciclo); canceladas e avulsos pendentes só dentro do lookback. O lote
    sai em ordem de ``last_reconciled_at`` (nunca conferidos primeiro),
    então execuções seguidas percorrem todo o conjunto.
    """
    lookback = now - timedelta(days=current_app.config.get("RECONCILE_TERMINAL_LOOKBACK_DAYS", 40))
    recurring = or_(
        Payment.stripe_subscription_id.isnot(None),
        Payment.mercadopago_preapproval_id.isnot(None),
    )
    one_time = and_(
        Payment.stripe_subscription_id.is_(None),
        Payment.mercadopago_preapproval_id.is_(None),
        or_(Payment.mercadopago_payment_id.isnot(None), Payment.stripe_payment_intent_id.isnot(None)),
    )
    return (
        Payment.query.filter(
            or_(
                and_(recurring, Payment.status != "cancelled"),
                and_(recurring, Payment.updated_at >= lookback),
                and_(one_time, Payment.status.notin_(ONE_TIME_TERMINAL_STATUSES), Payment.created_at >= lookback),
            ),
        )
        .order_by(Payment.last_reconciled_at.asc().nulls_first(), Payment.id.asc())
        .limit(current_app.config.get("RECONCILE_BATCH_SIZE", 200))
        .all()
    )


def mark_reconciled(payment_ids: list[int], now: datetime) -> None:
    """Carimba ``last_reconciled_at`` sem mexer em ``updated_at``."""
    if not payment_ids:
        return
    db.session.execute(
        update(Payment)
        .where(Payment.id.in_(payment_ids))
        .values(last_reconciled_at=now, updated_at=Payment.updated_at)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()


def fetch_snapshots(jobs: list[tuple[int, str, str, str]], gateways: dict, max_workers: int):
    """Consulta os gateways em paralelo; devolve {payment_id: snapshot | exceção}."""

    def _fetch(job):
        payment_id, gateway, kind, ref = job
        try:
            return payment_id, gateways[gateway].fetch(kind, ref)
        except Exception as e:  # resultado vai para o log da thread principal
            return payment_id, e

    if not jobs:
        return {}
    with ThreadPoolExecutor(max_workers=max(1, int(max_workers))) as pool:
        return dict(pool.map(_fetch, jobs))


def _is_current_recurring(payment: Payment) -> bool:
    """Só a assinatura mais recente do tenant pode bloquear/liberar o acesso."""
    if not payment.recurring_ref:
        return False
    newest = (
        Payment.query.filter(
            Payment.tenant_email == payment.tenant_email,
            or_(Payment.stripe_subscription_id.isnot(None), Payment.mercadopago_preapproval_id.isnot(None)),
        )
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .first()
    )
    return newest is None or newest.id == payment.id


def _set(obj, attr, value) -> bool:
    if getattr(obj, attr) == value:
        return False
    setattr(obj, attr, value)
    return True


def apply_snapshot(payment: Payment, snap: GatewaySnapshot, now: datetime) -> tuple[bool, bool, int]:
    """Aplica um retrato do gateway. Devolve (payment_alterado, tenant_alterado, extensões)."""
    tenant = Tenant.query.filter_by(email=payment.tenant_email).first()
    is_subscription = snap.kind == "subscription"
    governs_tenant = tenant is not None and is_subscription and _is_current_recurring(payment)
    p_changed = False
    t_changed = False
    extensions = 0
    if snap.status != PENDING:
        p_changed |= _set(payment, "pending_since", None)

    if snap.status in (PAUSED, CANCELLED):
        if snap.status == CANCELLED and (is_subscription or payment.status != "approved"):
            p_changed |= _set(payment, "status", "cancelled")
        p_changed |= _set(payment, "status_detail", snap.detail)
        if governs_tenant:
            t_changed |= _set(tenant, "payment_status", snap.status)
            if tenant.access_expires_at is None or tenant.access_expires_at > now:
                tenant.access_expires_at = now
                t_changed = True

    elif snap.status == PENDING:
        if payment.pending_since is None:
            payment.pending_since = now
            p_changed = True
        if governs_tenant:
            t_changed |= _set(tenant, "payment_status", "pending")
            max_hours = current_app.config.get("RECONCILE_PENDING_MAX_HOURS", 72)
            stuck = now - payment.pending_since > timedelta(hours=max_hours)
            if stuck and (tenant.access_expires_at is None or tenant.access_expires_at > now):
                current_app.logger.info("[reconcile] Assinatura %s pendente desde %s; acesso bloqueado",
                                        snap.ref, payment.pending_since)
                tenant.access_expires_at = now
                t_changed = True

    elif snap.status == REJECTED:
        if payment.status != "rejected":
            # novo episódio de falha: reinicia a régua de lembretes
            payment.status = "rejected"
            payment.last_failure_at = now
            payment.failure_attempts = (payment.failure_attempts or 0) + 1
            payment.reminders_sent = 0
            payment.last_reminder_at = None
            p_changed = True
        elif payment.last_failure_at is None:
            payment.last_failure_at = now
            p_changed = True
        p_changed |= _set(payment, "gateway_error_code", snap.detail)
        if governs_tenant:
            t_changed |= _set(tenant, "payment_status", "rejected")
            t_changed |= _set(tenant, "payment_failed_reason",
                              friendly_error(snap.gateway, snap.detail).message)

    elif snap.status in (AUTHORIZED, APPROVED):
        charges = snap.approved_charges
        watermark = payment.last_synced_charge_at or payment.approved_at
        applied = set(payment.synced_charge_ids or ())
        if payment.last_synced_charge_id:
            applied.add(payment.last_synced_charge_id)
        fresh = [
            c for c in charges
            if c.id not in applied and c.approved_at and (watermark is None or c.approved_at > watermark)
        ]
        plan = payment.plan or get_plan(payment.plan_id)

        if fresh and plan is None:
            current_app.logger.warning("[reconcile] Pagamento %s sem plano; cobranças não aplicadas", payment.id)
            fresh = []

        if fresh and tenant is not None:
            current = tenant.access_expires_at
            for charge in fresh:
                base = max(current, charge.approved_at) if current else charge.approved_at
                candidate = calculate_expiration(plan, base)
                if current is None or candidate > current:
                    current = candidate
                    extensions += 1
            if tenant.access_expires_at is None or current > tenant.access_expires_at:
                tenant.access_expires_at = current
                t_changed = True

        if fresh:
            last = fresh[-1]
            payment.last_synced_charge_at = last.approved_at
            payment.last_synced_charge_id = last.id
            kept = list(payment.synced_charge_ids or []) + [c.id for c in fresh]
            payment.synced_charge_ids = kept[-APPLIED_CHARGES_KEPT:]
            if payment.approved_at is None:
                payment.approved_at = fresh[0].approved_at
            p_changed = True

        if charges:
            p_changed |= _set(payment, "status", "approved")
            if tenant is not None and (governs_tenant or not is_subscription):
                t_changed |= _set(tenant, "is_active", True)
                t_changed |= _set(tenant, "payment_status", "ok")
                t_changed |= _set(tenant, "payment_failed_reason", None)

    return p_changed, t_changed, extensions


def reconcile_payments(now: datetime | None = None) -> ReconcileReport:
    now = now or datetime.utcnow()
    report = ReconcileReport()
    gateways = get_gateways()
    configured = {name for name, gw in gateways.items() if gw.is_configured()}
    if not configured:
        current_app.logger.info("[reconcile] Nenhum gateway configurado; conciliação ignorada")
        return report

    payments = reconcile_candidates(now)
    jobs = []
    for p in payments:
        ref = p.gateway_ref
        if ref is None or ref[0] not in configured:
            report.skipped += 1
            continue
        jobs.append((p.id, *ref))

    results = fetch_snapshots(jobs, gateways, current_app.config.get("RECONCILE_MAX_WORKERS", 4))
    by_id = {p.id: p for p in payments}
    mark_reconciled(list(by_id), now)

    for payment_id, _gateway, _kind, ref in jobs:
        report.checked += 1
        result = results.get(payment_id)
        if isinstance(result, Exception):
            report.errors += 1
            report.error_refs.append(ref)
            if isinstance(result, GatewayError):
                current_app.logger.warning("[reconcile] Pagamento %s (%s): %s", payment_id, ref, result)
            else:
                current_app.logger.error("[reconcile] Pagamento %s (%s): erro inesperado %r",
                                         payment_id, ref, result)
            continue
        try:
            p_changed, t_changed, ext = apply_snapshot(by_id[payment_id], result, now)
            if p_changed or t_changed:
                db.session.commit()
            report.payments_updated += int(p_changed)
            report.tenants_updated += int(t_changed)
            report.extensions += ext
        except Exception:
            db.session.rollback()
            report.errors += 1
            report.error_refs.append(ref)
            current_app.logger.exception("[reconcile] Falha ao aplicar estado do pagamento %s", payment_id)

    current_app.logger.info("[reconcile] %s", report.as_dict())
    return report
