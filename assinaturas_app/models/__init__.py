# assinaturas_app/models/__init__.py
# -*- coding: utf-8 -*-
from .tenant import Tenant
from .plan import Plan
from .payment import Payment
from .notification import NotificationLog, ChannelAccount
from .setting import Setting


__all__ = [
    "Tenant",
    "Plan",
    "Payment",
    "NotificationLog",
    "ChannelAccount",
    "Setting",
]
