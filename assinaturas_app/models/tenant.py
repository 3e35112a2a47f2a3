# assinaturas_app/models/tenant.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from datetime import datetime
from ..extensions import db, bcrypt


class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, default="Cliente")
    email = db.Column(db.String(180), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(40))
    password_hash = db.Column(db.String(255))
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=True, index=True)

    # acesso pago
    access_expires_at = db.Column(db.DateTime, nullable=True, index=True)   # null = sem expiração
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    payment_status = db.Column(db.String(20), nullable=False, default="ok")  # ok, pending, paused, cancelled, rejected
    payment_failed_reason = db.Column(db.String(255))

    # último lembrete de vencimento enviado (gate de deduplicação)
    last_reminder_sent_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    plan = db.relationship("Plan")

    def set_password(self, raw: str) -> None:
        self.password_hash = bcrypt.generate_password_hash(raw).decode("utf-8")

    def check_password(self, raw: str) -> bool:
        if not self.password_hash:
            return False
        return bcrypt.check_password_hash(self.password_hash, raw)

    @property
    def display_name(self) -> str:
        return self.name or "Cliente"

    def __repr__(self):
        return f"<Tenant {self.id} {self.email}>"
