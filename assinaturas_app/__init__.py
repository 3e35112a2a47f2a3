# assinaturas_app/__init__.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import os
from datetime import datetime

from flask import Flask
from config import Config, TestingConfig, StagingConfig, ProductionConfig
from .extensions import db, bcrypt, migrate, scheduler, init_extensions, register_cli
from .scheduler import SubscriptionScheduler

CONFIGS = {
    "testing": TestingConfig,
    "staging": StagingConfig,
    "production": ProductionConfig,
}


def create_app(config_object: type[Config] | None = None, overrides: dict | None = None) -> Flask:
    app = Flask(__name__, template_folder="../templates")

    if config_object is None:
        app_env = os.getenv("APP_ENV", "").lower()
        config_object = CONFIGS.get(app_env, Config)
    app.config.from_object(config_object)
    if overrides:
        app.config.update(overrides)

    # Extensões (DB/Bcrypt/Migrate/Scheduler)
    init_extensions(app)
    # modelos registrados no metadata antes de create_all/migrate
    from . import models  # noqa: F401

    app.config["STARTED_AT"] = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S UTC")

    # Jobs de assinatura (lembretes, conciliação, retry de notificações, PIX expirado)
    controller = SubscriptionScheduler(app, scheduler)
    app.extensions["subscription_scheduler"] = controller

    # CLI (ex.: flask init-db, flask scheduler-status)
    register_cli(app)

    if not app.config.get("TESTING") and os.getenv("DISABLE_SCHEDULER") != "1":
        controller.start()

    return app
