# assinaturas_app/models/notification.py
from __future__ import annotations
from datetime import datetime
from ..extensions import db


class NotificationLog(db.Model):
    __tablename__ = "notification_logs"
    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(40), nullable=False, index=True)        # 3days, 1day, daily_reminder, payment_failed...
    channel = db.Column(db.String(16), nullable=False, default="whatsapp")  # whatsapp | email
    recipient_contact = db.Column(db.String(180), nullable=False)
    recipient_name = db.Column(db.String(120))
    subject = db.Column(db.String(255))
    message = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending | sent | failed
    account_id = db.Column(db.Integer, db.ForeignKey("channel_accounts.id"), nullable=True)
    error = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    sent_at = db.Column(db.DateTime)


class ChannelAccount(db.Model):
    __tablename__ = "channel_accounts"
    id = db.Column(db.Integer, primary_key=True)
    label = db.Column(db.String(120), nullable=False)
    phone_number = db.Column(db.String(40))
    scope = db.Column(db.String(20), nullable=False, default="marketing", index=True)  # notifications | marketing
    connection_status = db.Column(db.String(20), nullable=False, default="disconnected")  # connected, disconnected, banned...
    priority = db.Column(db.Integer, nullable=False, default=0)

    # rotação por limite horário
    hourly_limit = db.Column(db.Integer, nullable=False, default=10)
    messages_sent_this_hour = db.Column(db.Integer, nullable=False, default=0)
    hour_bucket_started_at = db.Column(db.DateTime)
    last_used_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
