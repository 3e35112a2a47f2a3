# assinaturas_app/extensions.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_migrate import Migrate
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import text


db = SQLAlchemy()
bcrypt = Bcrypt()
migrate = Migrate()
scheduler = BackgroundScheduler(daemon=True)


def init_extensions(app):
    # DB/Bcrypt/Migrate
    db.init_app(app)
    bcrypt.init_app(app)
    migrate.init_app(app, db)
    # o agendador usa o mesmo fuso das janelas de vencimento
    if not scheduler.running:
        scheduler.configure(timezone=app.config.get("SCHEDULER_TIMEZONE", "UTC"))


def register_cli(app):
    @app.cli.command("init-db")
    def init_db_cmd():
        """Cria as tabelas iniciais (DEV/MVP). Para produção: use flask db upgrade."""
        with app.app_context():
            # sanity check
            db.session.execute(text("SELECT 1"))
            db.create_all()
            print("Tabelas criadas.")

    @app.cli.command("scheduler-status")
    def scheduler_status_cmd():
        """Mostra o estado do agendador de assinaturas."""
        controller = app.extensions["subscription_scheduler"]
        st = controller.status()
        print(f"running={st['running']} last_run_date={st['last_run_date']} "
              f"next_run_in_minutes={st['next_run_in_minutes']}")

    @app.cli.command("run-reminders")
    def run_reminders_cmd():
        """Executa um ciclo de lembretes de vencimento agora."""
        app.extensions["subscription_scheduler"].run_reminders()
        print("Lembretes processados.")

    @app.cli.command("run-reconcile")
    def run_reconcile_cmd():
        """Executa a conciliação com os gateways agora."""
        app.extensions["subscription_scheduler"].run_reconciliation()
        print("Conciliação concluída.")

    @app.cli.command("retry-notifications")
    def retry_notifications_cmd():
        """Reenvia notificações pendentes de WhatsApp."""
        app.extensions["subscription_scheduler"].run_notification_retry()
        print("Fila de notificações processada.")
