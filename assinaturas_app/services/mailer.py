# assinaturas_app/services/mailer.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import smtplib
import ssl
from email.message import EmailMessage

from flask import current_app


def mail_configured() -> bool:
    cfg = current_app.config
    return bool(cfg.get("MAIL_ENABLED", True) and cfg.get("MAIL_HOST") and cfg.get("MAIL_FROM"))


def send_email(to: str, subject: str, text: str, html: str | None = None) -> tuple[bool, str | None]:
    """Envia um e-mail via SMTP. Devolve (ok, erro); nunca levanta."""
    cfg = current_app.config
    if not mail_configured():
        current_app.logger.info("[mail] SMTP não configurado; envio para %s ignorado", to)
        return False, "smtp_not_configured"

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = cfg["MAIL_FROM"]
    msg["To"] = to
    if cfg.get("MAIL_REPLY_TO"):
        msg["Reply-To"] = cfg["MAIL_REPLY_TO"]
    msg.set_content(text or "")
    if html:
        msg.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(cfg["MAIL_HOST"], int(cfg.get("MAIL_PORT", 587)),
                          timeout=float(cfg.get("MAIL_TIMEOUT", 15))) as server:
            if cfg.get("MAIL_USE_TLS", True):
                server.starttls(context=ssl.create_default_context())
            if cfg.get("MAIL_USER") and cfg.get("MAIL_PASSWORD"):
                server.login(cfg["MAIL_USER"], cfg["MAIL_PASSWORD"])
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as e:
        current_app.logger.exception("[mail] Falha ao enviar e-mail para %s", to)
        return False, str(e)
