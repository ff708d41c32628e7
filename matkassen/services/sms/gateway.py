"""SMS gateway contract and the HelloSMS implementation."""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from typing import Protocol

import httpx

from matkassen.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_CODE = "+46"
_E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")


@dataclass(frozen=True)
class SendSmsRequest:
    to: str
    text: str
    sender: str | None = None


@dataclass(frozen=True)
class SendSmsResponse:
    success: bool
    message_id: str | None = None
    error: str | None = None
    http_status: int | None = None


@dataclass(frozen=True)
class BalanceResult:
    success: bool
    credits: float | None = None
    error: str | None = None


class SmsGateway(Protocol):
    async def send(self, request: SendSmsRequest) -> SendSmsResponse: ...

    async def check_balance(self) -> BalanceResult: ...


def normalize_phone_to_e164(phone: str, default_country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Normalise a Swedish-style phone number to E.164.

    "070-123 45 67" -> "+46701234567", "46701234567" -> "+46701234567".
    """
    digits = re.sub(r"\D", "", phone or "")
    country_digits = default_country_code.lstrip("+")

    if default_country_code == "+46":
        if digits.startswith("0"):
            return "+46" + digits[1:]
        if digits.startswith("46"):
            return "+" + digits
        if 8 <= len(digits) <= 10:
            return "+46" + digits

    if not digits.startswith(country_digits):
        return default_country_code + digits
    return "+" + digits


def is_valid_e164(phone: str) -> bool:
    return bool(_E164_RE.match(phone or ""))


class HelloSmsGateway:
    """
    HelloSMS REST gateway.

    In test mode nothing is sent and a fake message id is returned. Network
    errors come back as failed responses without an HTTP status (permanent).
    """

    def __init__(
        self,
        api_url: str,
        username: str,
        password: str,
        sender: str,
        test_mode: bool,
        balance_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.username = username
        self.password = password
        self.sender = sender
        self.test_mode = test_mode
        self.balance_url = balance_url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> HelloSmsGateway:
        return cls(
            api_url=settings.HELLO_SMS_API_URL,
            username=settings.HELLO_SMS_USERNAME,
            password=settings.HELLO_SMS_PASSWORD,
            sender=settings.HELLO_SMS_FROM,
            test_mode=settings.sms_test_mode,
            balance_url=settings.HELLO_SMS_BALANCE_URL,
            timeout=settings.HELLO_SMS_TIMEOUT_SECONDS,
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            auth=(self.username, self.password),
            transport=self._transport,
        )

    async def send(self, request: SendSmsRequest) -> SendSmsResponse:
        if self.test_mode:
            return SendSmsResponse(success=True, message_id=f"test_{secrets.token_hex(6)}")

        if not self.has_credentials:
            logger.error("HelloSMS credentials not configured (required for live SMS)")
            return SendSmsResponse(success=False, error="HelloSMS credentials not configured")

        body = {
            "to": normalize_phone_to_e164(request.to),
            "message": request.text,
            "from": request.sender or self.sender,
            "sendApiCallback": False,
        }
        try:
            async with self._client() as client:
                response = await client.post(self.api_url, json=body)
        except httpx.HTTPError as e:
            logger.warning(f"HelloSMS request failed: {type(e).__name__}")
            return SendSmsResponse(success=False, error=str(e) or type(e).__name__)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_success and data.get("status") == "success":
            message_ids = data.get("messageIds") or []
            message_id = message_ids[0].get("apiMessageId") if message_ids else None
            return SendSmsResponse(success=True, message_id=message_id or "unknown")

        return SendSmsResponse(
            success=False,
            error=data.get("statusText") or f"HTTP {response.status_code}",
            http_status=response.status_code,
        )

    async def check_balance(self) -> BalanceResult:
        if self.test_mode:
            return BalanceResult(success=True, credits=None)
        if not self.has_credentials or not self.balance_url:
            return BalanceResult(success=False, error="HelloSMS credentials not configured")

        try:
            async with self._client() as client:
                response = await client.get(self.balance_url)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            return BalanceResult(success=False, error=str(e) or type(e).__name__)

        credits = data.get("credits", data.get("balance"))
        if credits is None:
            return BalanceResult(success=False, error="Balance missing from response")
        return BalanceResult(success=True, credits=float(credits))
