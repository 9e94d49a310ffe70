from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List

import httpx

from app.core.config import settings
from app.core.logger import logger
from app.utils.helpers import mask_target, normalize_phone

CHANNEL_EMAIL = "email"
CHANNEL_SMS = "sms"


@dataclass(frozen=True)
class NotificationIntent:
    """A message the workflow wants delivered once its transaction has committed."""
    channel: str
    target: str
    subject: str
    body: str


class NotificationService:
    """Email/SMS sender with a provider toggle per channel."""

    def __init__(self) -> None:
        self.sms_provider = (settings.NOTIFY_SMS_PROVIDER or "dev").strip().lower()
        self.email_provider = (settings.NOTIFY_EMAIL_PROVIDER or "dev").strip().lower()

    def send_sms(self, phone: str, body: str) -> Dict[str, str]:
        target = normalize_phone(phone)
        provider = self.sms_provider
        if provider == "dev":
            logger.info("[DEV SMS] to=%s body=%s", target, body)
            return {"provider": "dev", "target": target}
        if provider == "twilio":
            sid = (settings.TWILIO_ACCOUNT_SID or "").strip()
            token = (settings.TWILIO_AUTH_TOKEN or "").strip()
            sender = (settings.SMS_FROM or "").strip()
            if not sid or not token or not sender:
                raise ValueError("Twilio SMS config missing (TWILIO_ACCOUNT_SID/TWILIO_AUTH_TOKEN/SMS_FROM)")
            url = f"https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
            data = {"To": target, "From": sender, "Body": body}
            with httpx.Client(timeout=20.0) as client:
                resp = client.post(url, data=data, auth=(sid, token))
                if resp.status_code >= 400:
                    raise ValueError(f"Twilio SMS failed: {resp.status_code} {resp.text[:200]}")
            return {"provider": "twilio", "target": target}
        raise ValueError(f"Unsupported NOTIFY_SMS_PROVIDER: {provider}")

    def send_email(self, email: str, subject: str, body: str) -> Dict[str, str]:
        target = (email or "").strip()
        provider = self.email_provider
        if provider == "dev":
            logger.info("[DEV EMAIL] to=%s subject=%s body=%s", target, subject, body)
            return {"provider": "dev", "target": target}
        if provider == "resend":
            api_key = (settings.RESEND_API_KEY or "").strip()
            sender = (settings.EMAIL_FROM or "").strip()
            if not api_key or not sender:
                raise ValueError("Resend email config missing (RESEND_API_KEY/EMAIL_FROM)")
            payload = {"from": sender, "to": [target], "subject": subject, "text": body}
            headers = {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
            with httpx.Client(timeout=20.0) as client:
                resp = client.post("https://api.resend.com/emails", json=payload, headers=headers)
                if resp.status_code >= 400:
                    raise ValueError(f"Resend email failed: {resp.status_code} {resp.text[:200]}")
            return {"provider": "resend", "target": target}
        raise ValueError(f"Unsupported NOTIFY_EMAIL_PROVIDER: {provider}")

    def send(self, target: str, subject: str, body: str, channel: str = CHANNEL_EMAIL) -> Dict[str, str]:
        if channel == CHANNEL_SMS:
            return self.send_sms(target, body)
        return self.send_email(target, subject, body)

    def dispatch(self, intents: Iterable[NotificationIntent]) -> List[str]:
        """
        Deliver intents one by one. Failures are logged and returned as
        warnings, never raised: the transition they describe has committed.
        """
        warnings: List[str] = []
        for intent in intents:
            try:
                self.send(intent.target, intent.subject, intent.body, intent.channel)
            except Exception as exc:
                logger.warning(
                    "notification_failed channel=%s target=%s error=%s",
                    intent.channel, mask_target(intent.target), exc,
                )
                warnings.append(f"Notification to {mask_target(intent.target)} failed")
        return warnings


notification_service = NotificationService()
