# assinaturas_app/services/expirations.py
# -*- coding: utf-8 -*-
"""
Consultas de tenants por janela de vencimento.

As janelas são calculadas uma única vez por execução (``ExpirationWindows``)
para que um lote lento não "ande" a janela entre uma consulta e outra.
Datas são gravadas em UTC sem tzinfo; as janelas por dia seguem a meia-noite
do fuso configurado em SCHEDULER_TIMEZONE.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from flask import current_app

from ..models import Tenant


def _to_naive_utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def local_midnight_utc(now: datetime, tz: str, day_offset: int = 0) -> datetime:
    """Meia-noite local (``day_offset`` dias a partir de hoje) convertida para UTC naive."""
    zone = ZoneInfo(tz)
    local_today = now.replace(tzinfo=timezone.utc).astimezone(zone).date()
    target = datetime.combine(local_today + timedelta(days=day_offset), time(0, 0), tzinfo=zone)
    return _to_naive_utc(target)


def local_hour(now: datetime, tz: str) -> int:
    return now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz)).hour


@dataclass(frozen=True)
class ExpirationWindows:
    now: datetime
    tz: str
    today_start: datetime

    @classmethod
    def compute(cls, now: datetime, tz: str | None = None) -> "ExpirationWindows":
        tz = tz or current_app.config.get("SCHEDULER_TIMEZONE", "UTC")
        return cls(now=now, tz=tz, today_start=local_midnight_utc(now, tz))

    def day_window(self, days: int) -> tuple[datetime, datetime]:
        start = local_midnight_utc(self.now, self.tz, days)
        end = local_midnight_utc(self.now, self.tz, days + 1)
        return start, end

    @property
    def local_hour(self) -> int:
        return local_hour(self.now, self.tz)

    @property
    def local_date(self) -> str:
        return self.now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(self.tz)).date().isoformat()


def _base_query():
    # inativos (desativados manualmente) não recebem avisos de vencimento
    return Tenant.query.filter(
        Tenant.access_expires_at.isnot(None),
        Tenant.is_active.is_(True),
    )


def expiring_in_days(windows: ExpirationWindows, days: int) -> list[Tenant]:
    """Vence no dia local ``hoje + days`` (janela [00:00, 00:00 do dia seguinte))."""
    start, end = windows.day_window(days)
    return (
        _base_query()
        .filter(Tenant.access_expires_at >= start, Tenant.access_expires_at < end)
        .order_by(Tenant.access_expires_at.asc())
        .all()
    )


def expiring_in_hours(windows: ExpirationWindows, hours: int) -> list[Tenant]:
    """Vence entre agora e ``agora + hours``."""
    end = windows.now + timedelta(hours=hours)
    return (
        _base_query()
        .filter(Tenant.access_expires_at >= windows.now, Tenant.access_expires_at <= end)
        .order_by(Tenant.access_expires_at.asc())
        .all()
    )


def expired_in_last_hours(windows: ExpirationWindows, hours: int) -> list[Tenant]:
    """Venceu entre ``agora - hours`` e agora."""
    start = windows.now - timedelta(hours=hours)
    return (
        _base_query()
        .filter(Tenant.access_expires_at >= start, Tenant.access_expires_at < windows.now)
        .order_by(Tenant.access_expires_at.asc())
        .all()
    )


def expired_yesterday(windows: ExpirationWindows) -> list[Tenant]:
    """Venceu ontem (dia local anterior, janela [ontem 00:00, hoje 00:00))."""
    start, end = windows.day_window(-1)
    return (
        _base_query()
        .filter(Tenant.access_expires_at >= start, Tenant.access_expires_at < end)
        .order_by(Tenant.access_expires_at.asc())
        .all()
    )
