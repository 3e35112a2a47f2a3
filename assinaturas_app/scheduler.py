# assinaturas_app/scheduler.py
# -*- coding: utf-8 -*-
"""
Controlador dos jobs periódicos de assinatura sobre o BackgroundScheduler.

Cada timer roda com ``max_instances=1`` e ``coalesce=True``: uma execução
nunca começa antes da anterior do mesmo timer terminar. Timers diferentes
podem se sobrepor.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from apscheduler.jobstores.base import JobLookupError

from .extensions import scheduler as default_scheduler
from .services.failed_payments import process_failed_payment_reminders
from .services.notifications import get_dispatcher
from .services.pix_recovery import process_expired_pix
from .services.reconciler import reconcile_payments
from .services.reminders import process_expiration_reminders

JOB_PREFIX = "subscriptions."


@dataclass
class SchedulerState:
    running: bool = False
    started_at: datetime | None = None
    # último dia (fuso do agendador) em que os lembretes de planos normais rodaram
    last_run_date: str | None = None
    last_runs: dict = field(default_factory=dict)
    last_errors: dict = field(default_factory=dict)


class SubscriptionScheduler:
    def __init__(self, app, scheduler=None):
        self.app = app
        self.scheduler = scheduler or default_scheduler
        self.state = SchedulerState()
        self._lock = threading.Lock()

    def _jobs(self):
        cfg = self.app.config
        return (
            ("reminders", self.run_reminders, cfg.get("REMINDER_INTERVAL_MINUTES", 60)),
            ("reconciliation", self.run_reconciliation, cfg.get("RECONCILE_INTERVAL_MINUTES", 30)),
            ("notification_retry", self.run_notification_retry, cfg.get("NOTIFICATION_RETRY_INTERVAL_MINUTES", 1)),
            ("pix_recovery", self.run_pix_recovery, cfg.get("PIX_RECOVERY_INTERVAL_MINUTES", 5)),
        )

    def start(self) -> bool:
        with self._lock:
            if self.state.running:
                self.app.logger.info("[scheduler] Agendador já está rodando")
                return False
            delay = self.app.config.get("SCHEDULER_FIRST_RUN_DELAY_SECONDS", 5)
            first_run = datetime.now(timezone.utc) + timedelta(seconds=delay)
            for name, func, minutes in self._jobs():
                self.scheduler.add_job(
                    func,
                    "interval",
                    minutes=minutes,
                    id=JOB_PREFIX + name,
                    replace_existing=True,
                    max_instances=1,
                    coalesce=True,
                    next_run_time=first_run,
                )
            if not self.scheduler.running:
                self.scheduler.start()
            self.state.running = True
            self.state.started_at = datetime.utcnow()
            self.app.logger.info("[scheduler] Agendador de assinaturas iniciado")
            return True

    def stop(self) -> bool:
        """Remove os jobs; execuções em andamento terminam sozinhas."""
        with self._lock:
            if not self.state.running:
                return False
            for name, _func, _minutes in self._jobs():
                try:
                    self.scheduler.remove_job(JOB_PREFIX + name)
                except JobLookupError:
                    pass
            self.state.running = False
            self.app.logger.info("[scheduler] Agendador de assinaturas parado")
            return True

    def status(self) -> dict:
        next_in = 0
        if self.state.running:
            job = self.scheduler.get_job(JOB_PREFIX + "reminders")
            if job is not None and job.next_run_time is not None:
                delta = job.next_run_time - datetime.now(timezone.utc)
                next_in = max(0, round(delta.total_seconds() / 60))
        return {
            "running": self.state.running,
            "last_run_date": self.state.last_run_date,
            "next_run_in_minutes": next_in,
            "last_runs": {k: v.isoformat() for k, v in self.state.last_runs.items()},
            "last_errors": dict(self.state.last_errors),
        }

    # ---------------- ticks ----------------
    def _run(self, name: str, func):
        with self.app.app_context():
            try:
                result = func()
                self.state.last_errors.pop(name, None)
                return result
            except Exception as e:
                self.state.last_errors[name] = str(e)
                self.app.logger.exception("[scheduler] Erro no job %s", name)
                return None
            finally:
                self.state.last_runs[name] = datetime.utcnow()

    def _reminders_tick(self):
        now = datetime.utcnow()
        counts = process_expiration_reminders(now, self.state)
        counts["payment_failed"] = process_failed_payment_reminders(now)
        return counts

    def run_reminders(self):
        return self._run("reminders", self._reminders_tick)

    def run_reconciliation(self):
        return self._run("reconciliation", reconcile_payments)

    def run_notification_retry(self):
        return self._run("notification_retry", lambda: get_dispatcher().retry_pending())

    def run_pix_recovery(self):
        return self._run("pix_recovery", process_expired_pix)
