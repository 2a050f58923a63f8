from __future__ import annotations

import time
from decimal import Decimal
from typing import Any, Protocol, cast

import httpx
import structlog

from partner_ledger.credentials.types import ResolvedCredential
from partner_ledger.observability.metrics import metrics_service

from .exceptions import SettlementRejectedError, SettlementTimeoutError
from .signing import balance_signature, floor_amount, settlement_signature
from .types import BalanceQueryPayload, SettlementPayload, SettlementResponse

BALANCE_ENDPOINT = "/api/account/balance"


class SettlementGateway(Protocol):
    """Operations required from an external game provider."""

    async def deposit(
        self, credential: ResolvedCredential, username: str, amount: Decimal
    ) -> SettlementResponse:
        """Credit ``amount`` to the player's provider account."""

    async def withdraw(
        self, credential: ResolvedCredential, username: str, amount: Decimal
    ) -> SettlementResponse:
        """Debit ``amount`` from the player's provider account."""

    async def get_balance(
        self, credential: ResolvedCredential, username: str
    ) -> Decimal:
        """Return the player's balance as held by the provider."""


class SignedSettlementGateway:
    """httpx client for providers using md5-signed balance calls.

    Deposit is ``POST``, withdrawal ``PUT`` and balance lookup ``GET`` on the
    same endpoint. A transport error or ``RESULT: false`` raises
    :class:`SettlementRejectedError`; a timeout raises
    :class:`SettlementTimeoutError` because the provider may still have
    applied the call.
    """

    def __init__(
        self,
        *,
        provider: str,
        base_url: str,
        timeout_seconds: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must be provided")
        self._provider = provider
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Accept": "application/json"},
        )
        self._logger = structlog.get_logger(__name__)

    @property
    def provider(self) -> str:
        return self._provider

    async def deposit(
        self, credential: ResolvedCredential, username: str, amount: Decimal
    ) -> SettlementResponse:
        return await self._move(credential, username, amount, method="POST")

    async def withdraw(
        self, credential: ResolvedCredential, username: str, amount: Decimal
    ) -> SettlementResponse:
        return await self._move(credential, username, amount, method="PUT")

    async def get_balance(
        self, credential: ResolvedCredential, username: str
    ) -> Decimal:
        payload: BalanceQueryPayload = {
            "opcode": credential.opcode,
            "username": username,
            "token": credential.token,
            "signature": balance_signature(
                credential.opcode, username, credential.token, credential.secret
            ),
        }
        response = await self._call("GET", "balance", params=dict(payload))
        data = response.get("DATA")
        raw = data.get("balance") if isinstance(data, dict) else data
        try:
            return Decimal(str(raw))
        except ArithmeticError as exc:
            raise SettlementRejectedError(
                f"{self._provider} returned an unreadable balance: {raw!r}"
            ) from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _move(
        self,
        credential: ResolvedCredential,
        username: str,
        amount: Decimal,
        *,
        method: str,
    ) -> SettlementResponse:
        whole = floor_amount(amount)
        if whole <= 0:
            raise SettlementRejectedError(
                f"Amount {amount} is below the provider's minimum unit"
            )
        payload: SettlementPayload = {
            "opcode": credential.opcode,
            "username": username,
            "token": credential.token,
            "amount": whole,
            "signature": settlement_signature(
                credential.opcode, username, credential.token, whole, credential.secret
            ),
        }
        operation = "deposit" if method == "POST" else "withdraw"
        self._logger.info(
            "settlement_call_started",
            provider=self._provider,
            operation=operation,
            username=username,
            amount=whole,
            credential=credential.masked(),
        )
        return await self._call(method, operation, json=dict(payload))

    async def _call(
        self,
        method: str,
        operation: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> SettlementResponse:
        started = time.perf_counter()
        try:
            response = await self._client.request(
                method, BALANCE_ENDPOINT, params=params, json=json
            )
        except httpx.TimeoutException as exc:
            self._logger.error(
                "settlement_call_timeout", provider=self._provider, operation=operation
            )
            raise SettlementTimeoutError(
                f"{self._provider} {operation} timed out"
            ) from exc
        except httpx.HTTPError as exc:
            raise SettlementRejectedError(
                f"{self._provider} {operation} failed: {exc}"
            ) from exc
        finally:
            metrics_service.observe_settlement_call(
                self._provider, operation, time.perf_counter() - started
            )

        if response.status_code >= 400:
            raise SettlementRejectedError(
                f"{self._provider} {operation} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise SettlementRejectedError(
                f"{self._provider} {operation} returned a non-JSON body",
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise SettlementRejectedError(
                f"{self._provider} {operation} returned an unexpected payload",
                status_code=response.status_code,
            )
        if body.get("RESULT") is False:
            raise SettlementRejectedError(
                _error_message(body), status_code=response.status_code
            )

        self._logger.info(
            "settlement_call_succeeded", provider=self._provider, operation=operation
        )
        return cast(SettlementResponse, body)


def _error_message(body: dict[str, Any]) -> str:
    message = body.get("message")
    data = body.get("DATA")
    if not message and isinstance(data, dict):
        message = data.get("message")
    return str(message or "Provider reported failure")
