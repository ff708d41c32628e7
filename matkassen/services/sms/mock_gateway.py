"""Scriptable in-memory gateway for tests and local demos."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from matkassen.services.sms.gateway import BalanceResult, SendSmsRequest, SendSmsResponse


@dataclass(frozen=True)
class MockSmsCall:
    request: SendSmsRequest
    response: SendSmsResponse
    timestamp: datetime


class MockSmsGateway:
    """
    Records every send and answers according to the configured behaviour.

    Behaviours: always succeed (default), always fail, or fail the first N
    calls and then succeed. Setters return self so they can be chained.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> MockSmsGateway:
        self._behavior = "success"
        self._error: str | None = None
        self._http_status: int | None = None
        self._fail_count = 0
        self._message_counter = 0
        self._balance_credits: float = 999
        self._balance_error: str | None = None
        self.calls: list[MockSmsCall] = []
        return self

    def always_succeed(self) -> MockSmsGateway:
        self._behavior = "success"
        return self

    def always_fail(self, error: str, http_status: int | None = None) -> MockSmsGateway:
        self._behavior = "fail"
        self._error = error
        self._http_status = http_status
        return self

    def fail_then_succeed(
        self, fail_count: int, error: str, http_status: int | None = None
    ) -> MockSmsGateway:
        self._behavior = "fail_then_succeed"
        self._fail_count = fail_count
        self._error = error
        self._http_status = http_status
        return self

    def mock_balance(self, credits: float) -> MockSmsGateway:
        self._balance_credits = credits
        self._balance_error = None
        return self

    def mock_balance_error(self, error: str) -> MockSmsGateway:
        self._balance_error = error
        return self

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def last_call(self) -> MockSmsCall | None:
        return self.calls[-1] if self.calls else None

    def _success(self) -> SendSmsResponse:
        self._message_counter += 1
        return SendSmsResponse(success=True, message_id=f"mock_{self._message_counter}")

    async def send(self, request: SendSmsRequest) -> SendSmsResponse:
        attempt = self.call_count + 1
        failing = self._behavior == "fail" or (
            self._behavior == "fail_then_succeed" and attempt <= self._fail_count
        )
        if failing:
            response = SendSmsResponse(
                success=False, error=self._error, http_status=self._http_status
            )
        else:
            response = self._success()
        self.calls.append(
            MockSmsCall(request=request, response=response, timestamp=datetime.now(timezone.utc))
        )
        return response

    async def check_balance(self) -> BalanceResult:
        if self._balance_error:
            return BalanceResult(success=False, error=self._balance_error)
        return BalanceResult(success=True, credits=self._balance_credits)
