# assinaturas_app/services/settings.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from ..extensions import db
from ..models import Setting

TRUTHY = {"1", "true", "sim", "yes", "on"}


def get_setting(key: str, group: str = "notifications", default: str = "") -> str:
    s = Setting.query.filter_by(group=group, key=key).first()
    return s.value if s else default


def set_setting(key: str, value: str, group: str = "notifications") -> None:
    s = Setting.query.filter_by(group=group, key=key).first()
    if not s:
        s = Setting(group=group, key=key, value=value)
        db.session.add(s)
    else:
        s.value = value
    db.session.commit()


def get_flag(key: str, group: str = "notifications", default: bool = True) -> bool:
    """Flag booleana; ausente ou vazia devolve o default (não quebra instalações antigas)."""
    raw = get_setting(key, group=group, default="")
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in TRUTHY


def set_flag(key: str, enabled: bool, group: str = "notifications") -> None:
    set_setting(key, "true" if enabled else "false", group=group)
