# tests/conftest.py
# -*- coding: utf-8 -*-
import os
import sys
import uuid
import pathlib
import tempfile
from datetime import datetime, timedelta

import pytest


# =====================================================================================
# Localização do projeto (garante que "assinaturas_app" esteja no sys.path)
# =====================================================================================
def _add_project_root():
    here = pathlib.Path(__file__).resolve()
    for candidate in [here.parent.parent, pathlib.Path.cwd()]:
        if (candidate / "assinaturas_app").is_dir():
            if str(candidate) not in sys.path:
                sys.path.insert(0, str(candidate))
            return candidate
    return None


PROJECT_ROOT = _add_project_root()


# =====================================================================================
# Ambiente de testes unitários (sem serviços externos)
# =====================================================================================
@pytest.fixture(autouse=True, scope="session")
def _testing_env():
    os.environ["APP_ENV"] = "testing"
    os.environ["FLASK_ENV"] = "testing"
    os.environ["TESTING"] = "1"
    os.environ["DISABLE_SCHEDULER"] = "1"
    os.environ.setdefault("SECRET_KEY", "testing-secret")
    yield


# =====================================================================================
# App Flask com SQLite temporário e schema criado uma vez por sessão
# =====================================================================================
@pytest.fixture(scope="session")
def app(_testing_env):
    fd, db_path = tempfile.mkstemp(prefix="assinaturas_test_", suffix=".sqlite")
    os.close(fd)

    from config import TestingConfig
    from assinaturas_app import create_app
    from assinaturas_app.extensions import db

    app = create_app(TestingConfig, overrides={
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 30}},
        "PUBLIC_BASE_URL": "https://app.test",
        "APP_NAME": "AutoWebinar",
        "MAIL_ENABLED": True,
        "MAIL_HOST": "smtp.test",
        "MAIL_FROM": "AutoWebinar <contato@app.test>",
        "MAIL_USE_TLS": False,
        "STRIPE_SECRET_KEY": "sk_test_123",
        "MERCADOPAGO_ACCESS_TOKEN": "TEST-mp-token",
        "WHATSAPP_API_URL": "http://whatsapp.test",
        "GATEWAY_THROTTLE_SECONDS": 0,
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.engine.dispose()
    try:
        os.remove(db_path)
    except OSError:
        pass


# =====================================================================================
# Limpeza: cada teste começa com as tabelas vazias e sem fakes instalados
# =====================================================================================
@pytest.fixture(autouse=True)
def _clean_state(app):
    yield
    from assinaturas_app.extensions import db
    app.extensions.pop("whatsapp_bridge", None)
    app.extensions.pop("gateway_factory", None)
    with app.app_context():
        db.session.rollback()
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    from assinaturas_app.extensions import db
    with app.app_context():
        try:
            yield db.session
        finally:
            try:
                db.session.rollback()
            except Exception:
                pass
            db.session.close()


# =====================================================================================
# Mocks de serviços externos
#   - SMTP (captura as mensagens em `outbox`)
#   - requests.get/post (sem rede)
# =====================================================================================
class _Resp:
    def __init__(self, status_code=200, json_data=None, text="OK"):
        self.status_code = status_code
        self._json = json_data if json_data is not None else {}
        self.text = text

    def json(self):
        return self._json


@pytest.fixture
def outbox():
    return []


@pytest.fixture(autouse=True)
def _mock_externals(monkeypatch, outbox):
    import smtplib
    import requests

    class _FakeSMTP:
        def __init__(self, host, port=0, timeout=None):
            self.host = host

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self, context=None):
            pass

        def login(self, user, password):
            pass

        def send_message(self, msg):
            outbox.append(msg)

    monkeypatch.setattr(smtplib, "SMTP", _FakeSMTP)
    monkeypatch.setattr(requests, "get", lambda *a, **k: _Resp(), raising=False)
    monkeypatch.setattr(requests, "post", lambda *a, **k: _Resp(), raising=False)
    yield


@pytest.fixture
def resp_factory():
    return _Resp


# =====================================================================================
# Fakes: bridge de WhatsApp e gateways de pagamento
# =====================================================================================
class FakeBridge:
    configured = True

    def __init__(self):
        self.statuses = {}
        self.default_status = "connected"
        self.sent = []
        self.fail_with = None

    def get_status(self, account_id):
        return self.statuses.get(account_id, self.default_status)

    def send(self, account_id, phone, text):
        from assinaturas_app.services.whatsapp import SendResult
        if self.fail_with:
            return SendResult(success=False, error=self.fail_with)
        self.sent.append((account_id, phone, text))
        return SendResult(success=True, message_id=str(len(self.sent)))


@pytest.fixture
def bridge(app):
    fake = FakeBridge()
    app.extensions["whatsapp_bridge"] = fake
    return fake


def _fake_gateway_class():
    from assinaturas_app.services.gateways import GatewayError, Instrument, PaymentGateway

    class FakeGateway(PaymentGateway):
        def __init__(self, name, configured=True):
            super().__init__()
            self.name = name
            self.configured = configured
            self.live_subscription = False
            self.snapshots = {}
            self.pix_error = None
            self.boleto_error = None
            self.calls = []

        def is_configured(self):
            return self.configured

        def create_pix(self, **kw):
            self.calls.append(("pix", kw))
            if self.pix_error:
                raise GatewayError(self.name, self.pix_error)
            return Instrument(
                kind="pix",
                gateway_id=f"{self.name}_pix_{kw['reference']}",
                code="00020126PIXCOPIAECOLA",
                image="https://qr.test/pix.png",
                expires_at=datetime.utcnow() + timedelta(minutes=kw["expires_minutes"]),
            )

        def create_boleto(self, **kw):
            self.calls.append(("boleto", kw))
            if self.boleto_error:
                raise GatewayError(self.name, self.boleto_error)
            return Instrument(
                kind="boleto",
                gateway_id=f"{self.name}_boleto_{kw['reference']}",
                code="34191.79001 01043.510047 91020.150008 1 00000000009700",
                url="https://boleto.test/voucher",
                expires_at=datetime.utcnow() + timedelta(days=kw["expires_days"]),
            )

        def _snapshot(self, ref):
            self.calls.append(("fetch", ref))
            snap = self.snapshots[ref]
            if isinstance(snap, Exception):
                raise snap
            return snap

        def fetch_subscription(self, ref):
            return self._snapshot(ref)

        def fetch_payment(self, ref):
            return self._snapshot(ref)

        def has_active_subscription(self, email):
            self.calls.append(("search", email))
            if isinstance(self.live_subscription, Exception):
                raise self.live_subscription
            return self.live_subscription

    return FakeGateway


@pytest.fixture
def gateways(app):
    """Instala Stripe/Mercado Pago falsos via app.extensions['gateway_factory']."""
    FakeGateway = _fake_gateway_class()
    fakes = {"stripe": FakeGateway("stripe"), "mercadopago": FakeGateway("mercadopago")}
    app.extensions["gateway_factory"] = lambda config: fakes
    return fakes


# =====================================================================================
# Factories de modelos
# =====================================================================================
@pytest.fixture
def make_plan(db_session):
    from assinaturas_app.models import Plan

    def _make(**kw):
        data = dict(
            slug=f"plano-{uuid.uuid4().hex[:6]}",
            name="Mensal",
            billing_mode="one_time",
            cycle_length=1,
            cycle_unit="months",
            price_cents=9700,
            gateway="stripe",
        )
        data.update(kw)
        plan = Plan(**data)
        db_session.add(plan)
        db_session.commit()
        return plan

    return _make


@pytest.fixture
def make_tenant(db_session):
    from assinaturas_app.models import Tenant

    def _make(plan=None, **kw):
        data = dict(
            name="Maria",
            email=f"maria+{uuid.uuid4().hex[:6]}@test.com",
            plan_id=plan.id if plan else None,
            is_active=True,
        )
        data.update(kw)
        tenant = Tenant(**data)
        db_session.add(tenant)
        db_session.commit()
        return tenant

    return _make


@pytest.fixture
def make_payment(db_session):
    from assinaturas_app.models import Payment

    def _make(tenant, plan, **kw):
        data = dict(
            tenant_email=tenant.email,
            tenant_name=tenant.name,
            phone=tenant.phone,
            plan_id=plan.id,
            amount_cents=plan.price_cents,
            status="pending",
        )
        data.update(kw)
        payment = Payment(**data)
        db_session.add(payment)
        db_session.commit()
        return payment

    return _make


@pytest.fixture
def make_account(db_session):
    from assinaturas_app.models import ChannelAccount

    def _make(**kw):
        data = dict(
            label=f"conta-{uuid.uuid4().hex[:4]}",
            scope="notifications",
            connection_status="connected",
            priority=0,
            hourly_limit=10,
            messages_sent_this_hour=0,
        )
        data.update(kw)
        account = ChannelAccount(**data)
        db_session.add(account)
        db_session.commit()
        return account

    return _make
