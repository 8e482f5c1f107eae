"""
Outbound SMS for phone verification codes.

Mirrors the email service: a provider ABC with ``console`` and ``twilio``
(REST API over httpx) implementations, chosen by ``WW_SMS_PROVIDER``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx
import structlog

from wastewatch.config import get_settings

logger = structlog.get_logger()


class BaseSmsProvider(ABC):
    name = "base"

    @abstractmethod
    async def send(self, to_number: str, body: str) -> bool:
        """Return True when the provider accepted the message."""


class ConsoleSmsProvider(BaseSmsProvider):
    """Logs the message instead of sending it (local development and tests)."""

    name = "console"

    async def send(self, to_number: str, body: str) -> bool:
        logger.info("sms_console", to=to_number, body=body)
        return True


class TwilioProvider(BaseSmsProvider):
    name = "twilio"

    def __init__(self, account_sid: str, auth_token: str, from_number: str) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    @property
    def endpoint(self) -> str:
        return f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Messages.json"

    async def send(self, to_number: str, body: str) -> bool:
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(
                    self.endpoint,
                    auth=(self.account_sid, self.auth_token),
                    data={"From": self.from_number, "To": to_number, "Body": body},
                )
                response.raise_for_status()
        except httpx.HTTPError:
            logger.exception("sms_send_failed", to=to_number, provider=self.name)
            return False
        logger.info("sms_sent", to=to_number, provider=self.name)
        return True


def _create_provider() -> BaseSmsProvider:
    settings = get_settings()
    provider_name = settings.sms_provider.lower()
    if provider_name == "console":
        return ConsoleSmsProvider()
    if provider_name == "twilio":
        return TwilioProvider(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_from_number,
        )
    msg = f"Unsupported SMS provider: {provider_name}"
    raise ValueError(msg)


class SmsService:
    def __init__(self, provider: BaseSmsProvider | None = None) -> None:
        self.provider = provider or _create_provider()

    async def send_verification_code(self, to_number: str, code: str) -> bool:
        settings = get_settings()
        minutes = settings.otp_ttl_seconds // 60
        body = f"Your {settings.portal_name} verification code is {code}. It expires in {minutes} minutes."
        return await self.provider.send(to_number, body)


_sms_service: SmsService | None = None


def get_sms_service() -> SmsService:
    global _sms_service  # noqa: PLW0603
    if _sms_service is None:
        _sms_service = SmsService()
    return _sms_service


def reset_sms_service() -> None:
    global _sms_service  # noqa: PLW0603
    _sms_service = None
