# assinaturas_app/services/plans.py
# -*- coding: utf-8 -*-
"""
Classificação de planos por cadência de cobrança.

Planos recorrentes com ciclo de até 3 dias são tratados como "diários":
recebem lembretes com granularidade de horas em vez de dias. Plano
ausente ou desconhecido cai no ciclo padrão.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Plan

DEFAULT_PLAN_NAME = "Seu Plano"
DEFAULT_DAILY_CYCLE_MAX_DAYS = 3


@dataclass(frozen=True)
class CycleClass:
    is_recurring: bool
    unit: str
    length: int

    def is_daily(self, max_days: int = DEFAULT_DAILY_CYCLE_MAX_DAYS) -> bool:
        return self.is_recurring and self.unit == "days" and self.length <= max_days


# plano ausente/desconhecido: nunca é "diário"
CONSERVATIVE_CYCLE = CycleClass(is_recurring=False, unit="months", length=1)


def get_plan(plan_id) -> Plan | None:
    if not plan_id:
        return None
    try:
        return db.session.get(Plan, plan_id)
    except SQLAlchemyError:
        current_app.logger.exception("[plans] Falha ao ler plano %s", plan_id)
        return None


def cycle_of(plan: Plan | None) -> CycleClass:
    if plan is None:
        return CONSERVATIVE_CYCLE
    return CycleClass(
        is_recurring=plan.billing_mode == "recurring",
        unit=plan.cycle_unit or "months",
        length=int(plan.cycle_length or 1),
    )


def resolve_cycle(plan_id) -> CycleClass:
    return cycle_of(get_plan(plan_id))


def is_daily_cycle(cycle: CycleClass) -> bool:
    max_days = current_app.config.get("DAILY_CYCLE_MAX_DAYS", DEFAULT_DAILY_CYCLE_MAX_DAYS)
    return cycle.is_daily(max_days)


def get_plan_name(plan_id) -> str:
    plan = get_plan(plan_id)
    return plan.name if plan and plan.name else DEFAULT_PLAN_NAME


def calculate_expiration(plan: Plan, base: datetime) -> datetime:
    """Soma um ciclo do plano a partir de ``base`` (meses/anos pelo calendário)."""
    length = int(plan.cycle_length or 1)
    unit = plan.cycle_unit or "months"
    if unit == "days":
        return base + timedelta(days=length)
    if unit == "weeks":
        return base + timedelta(weeks=length)
    if unit == "years":
        return base + relativedelta(years=length)
    return base + relativedelta(months=length)
