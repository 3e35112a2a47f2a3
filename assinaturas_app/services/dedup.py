# assinaturas_app/services/dedup.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Tenant

THREE_DAYS = "3days"
ONE_DAY = "1day"
EXPIRED = "expired"
DAILY_REMINDER = "daily_reminder"
DAILY_EXPIRED = "daily_expired"

BUCKETS = (THREE_DAYS, ONE_DAY, EXPIRED, DAILY_REMINDER, DAILY_EXPIRED)

# horas mínimas desde o último aviso; um pouco abaixo do espaçamento nominal
# para tolerar atraso do agendador sem repetir o aviso no mesmo dia
DEFAULT_WINDOWS_HOURS = {
    THREE_DAYS: 48,
    ONE_DAY: 20,
    EXPIRED: 20,
    DAILY_REMINDER: 4,
    DAILY_EXPIRED: 4,
}


def should_send(tenant, bucket: str, now: datetime, windows: dict | None = None) -> bool:
    last = tenant.last_reminder_sent_at
    if last is None:
        return True
    windows = windows or DEFAULT_WINDOWS_HOURS
    if bucket not in windows:
        raise ValueError(f"bucket desconhecido: {bucket}")
    hours_since = (now - last).total_seconds() / 3600
    return hours_since >= windows[bucket]


def mark_reminder_sent(tenant_id: int, now: datetime) -> None:
    """Atualiza ``last_reminder_sent_at`` num único UPDATE."""
    try:
        db.session.execute(
            update(Tenant).where(Tenant.id == tenant_id).values(last_reminder_sent_at=now)
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[dedup] Falha ao marcar lembrete enviado para tenant %s", tenant_id)
