# assinaturas_app/services/reminders.py
# -*- coding: utf-8 -*-
"""
Ciclo horário de lembretes de vencimento.

Planos diários (ciclo recorrente de até 3 dias) são verificados a cada
execução: lembrete poucas horas antes e aviso logo depois de vencer.
Planos normais são avaliados a cada execução a partir das 8h locais, com
o dedup barrando repetições: lembrete de 3 dias, de 1 dia (com PIX/boleto
de renovação) e, só entre 8h e 10h, o aviso de plano expirado ontem.
"""
from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from flask import current_app

from ..extensions import db
from ..models import Tenant
from . import dedup
from .expirations import (
    ExpirationWindows, expired_in_last_hours, expired_yesterday,
    expiring_in_days, expiring_in_hours,
)
from .notifications import PENDING, SENT, send_email_notification, send_whatsapp_notification
from .plans import get_plan_name, is_daily_cycle, resolve_cycle
from .renewal import generate_renewal_payment

REMINDER_BUCKETS = {dedup.THREE_DAYS: 3, dedup.ONE_DAY: 1, dedup.DAILY_REMINDER: 0}


def _local(dt: datetime, tz: str) -> datetime:
    return dt.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz))


def send_expiration_notice(tenant: Tenant, bucket: str, windows: ExpirationWindows) -> bool:
    """E-mail + WhatsApp do bucket. True se algum canal entregou (ou enfileirou)."""
    plan_name = get_plan_name(tenant.plan_id)
    expires_local = _local(tenant.access_expires_at, windows.tz)
    context = dict(
        plan_name=plan_name,
        expires_on=expires_local.strftime("%d/%m/%Y"),
        expires_time=expires_local.strftime("%H:%M"),
    )
    if bucket in REMINDER_BUCKETS:
        days_left = REMINDER_BUCKETS[bucket]
        subject = (
            f"Seu plano {plan_name} vence hoje" if days_left == 0
            else f"Seu plano {plan_name} vence em {days_left} dia(s)"
        )
        emailed = send_email_notification(
            tenant.email, subject, "expiration_reminder", bucket,
            name=tenant.display_name, days_left=days_left, **context,
        )
    else:
        emailed = send_email_notification(
            tenant.email, f"Seu plano {plan_name} expirou", "plan_expired", bucket,
            name=tenant.display_name, **context,
        )
    whatsapp = send_whatsapp_notification(
        tenant.phone, bucket, name=tenant.display_name,
        renew_url=f"{current_app.config.get('PUBLIC_BASE_URL', '')}/checkout", **context,
    )
    return emailed or whatsapp in (SENT, PENDING)


def _process_bucket(tenants: list[Tenant], bucket: str, windows: ExpirationWindows, *,
                    daily: bool, renew: bool) -> int:
    dedup_windows = current_app.config.get("DEDUP_WINDOWS_HOURS") or dedup.DEFAULT_WINDOWS_HOURS
    sent = 0
    for tenant in tenants:
        try:
            if is_daily_cycle(resolve_cycle(tenant.plan_id)) != daily:
                continue
            if not dedup.should_send(tenant, bucket, windows.now, dedup_windows):
                current_app.logger.info("[reminders] %s para %s enviado recentemente; pulando",
                                        bucket, tenant.email)
                continue
            if not send_expiration_notice(tenant, bucket, windows):
                current_app.logger.warning("[reminders] Nenhum canal entregou %s para %s", bucket, tenant.email)
                continue
            dedup.mark_reminder_sent(tenant.id, windows.now)
            sent += 1
            current_app.logger.info("[reminders] %s enviado para %s", bucket, tenant.email)
            if renew:
                generate_renewal_payment(tenant, windows.now)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("[reminders] Erro ao processar %s para %s", bucket, tenant.email)
    return sent


def process_expiration_reminders(now: datetime, state) -> dict:
    """Executa um ciclo; ``state`` é o SchedulerState (usa/atualiza ``last_run_date``)."""
    cfg = current_app.config
    windows = ExpirationWindows.compute(now)
    counts = {bucket: 0 for bucket in dedup.BUCKETS}

    # planos diários: toda execução
    counts[dedup.DAILY_REMINDER] = _process_bucket(
        expiring_in_hours(windows, cfg.get("DAILY_REMINDER_LEAD_HOURS", 6)),
        dedup.DAILY_REMINDER, windows, daily=True, renew=True,
    )
    counts[dedup.DAILY_EXPIRED] = _process_bucket(
        expired_in_last_hours(windows, cfg.get("DAILY_EXPIRED_LOOKBACK_HOURS", 6)),
        dedup.DAILY_EXPIRED, windows, daily=True, renew=False,
    )

    # planos normais: toda execução a partir de STANDARD_REMINDER_HOUR;
    # repetições ficam por conta do dedup
    hour = windows.local_hour
    if hour < cfg.get("STANDARD_REMINDER_HOUR", 8):
        return counts

    counts[dedup.THREE_DAYS] = _process_bucket(
        expiring_in_days(windows, 3), dedup.THREE_DAYS, windows, daily=False, renew=False,
    )
    counts[dedup.ONE_DAY] = _process_bucket(
        expiring_in_days(windows, 1), dedup.ONE_DAY, windows, daily=False, renew=True,
    )
    start, end = cfg.get("EXPIRED_NOTICE_HOURS", (8, 10))
    if start <= hour < end:
        counts[dedup.EXPIRED] = _process_bucket(
            expired_yesterday(windows), dedup.EXPIRED, windows, daily=False, renew=False,
        )

    state.last_run_date = windows.local_date
    current_app.logger.info("[reminders] Ciclo concluído: %s", counts)
    return counts
