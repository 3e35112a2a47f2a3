# assinaturas_app/models/plan.py
from __future__ import annotations
from datetime import datetime
from ..extensions import db

BILLING_MODES = ("one_time", "recurring")
CYCLE_UNITS = ("days", "weeks", "months", "years")


class Plan(db.Model):
    __tablename__ = "plans"
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    active = db.Column(db.Boolean, default=True)

    # cobrança
    billing_mode = db.Column(db.String(16), nullable=False, default="one_time")  # one_time, recurring
    cycle_length = db.Column(db.Integer, nullable=False, default=1)              # a cada X períodos
    cycle_unit = db.Column(db.String(10), nullable=False, default="months")      # days, weeks, months, years

    # preço sempre em centavos para evitar float
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(8), default="BRL")

    # gateway usado para gerar PIX/boleto de renovação
    gateway = db.Column(db.String(20), nullable=False, default="stripe")  # stripe, mercadopago

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_recurring(self) -> bool:
        return self.billing_mode == "recurring"

    def __repr__(self):
        return f"<Plan {self.slug} {self.billing_mode}/{self.cycle_length} {self.cycle_unit}>"
