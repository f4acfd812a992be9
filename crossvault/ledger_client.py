"""
Wallet Ledger Client

WalletLedger is the contract the settlement orchestrator depends on:
balance lookup, wallet address resolution, transfer initiation and
transfer-status polling.

CircleLedgerClient implements it against the Circle programmable
wallets REST API. Every HTTP call goes through a RetryExecutor; 4xx
responses are rejections and are not retried.
"""

import asyncio
import base64
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from .config import LedgerConfig
from .logging_config import get_logger
from .retry import RetryExecutor
from .types import (
    LedgerError, LedgerRejectedError, TokenInfo, TransferInitResult,
    TransferResult, TransferStatus, WalletBalance
)

COMPONENT = "LedgerClient"

TERMINAL_FAILURE_STATES = {
    "FAILED": TransferStatus.FAILED,
    "CANCELLED": TransferStatus.CANCELLED,
}


def is_retryable(error: Exception) -> bool:
    """4xx rejections other than 429 will fail the same way again"""
    return not isinstance(error, LedgerRejectedError)


class WalletLedger(ABC):
    """Custodial wallet ledger operations used by settlement"""

    @property
    @abstractmethod
    def source_wallet_id(self) -> str:
        """Wallet that holds realized profit before settlement"""

    @abstractmethod
    async def get_balance(self, wallet_id: str) -> List[WalletBalance]:
        """Token balances of a wallet"""

    @abstractmethod
    async def get_wallet_address(self, wallet_id: str) -> str:
        """On-chain address of a wallet"""

    @abstractmethod
    async def transfer(
        self,
        token_id: str,
        amount: str,
        destination_address: str,
        idempotency_key: str
    ) -> TransferInitResult:
        """Initiate a transfer from the source wallet"""

    @abstractmethod
    async def wait_for_transaction(
        self,
        transaction_id: str,
        max_attempts: Optional[int] = None,
        interval_seconds: Optional[float] = None
    ) -> TransferResult:
        """Poll a transfer until COMPLETE, FAILED/CANCELLED or TIMEOUT"""


def encrypt_entity_secret(entity_secret_hex: str, public_key_pem: str) -> str:
    """RSA-OAEP(SHA-256) encrypt the entity secret, base64-encoded"""
    public_key = serialization.load_pem_public_key(public_key_pem.encode())
    ciphertext = public_key.encrypt(
        bytes.fromhex(entity_secret_hex),
        padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA256()),
            algorithm=hashes.SHA256(),
            label=None
        )
    )
    return base64.b64encode(ciphertext).decode("ascii")


class CircleLedgerClient(WalletLedger):
    """aiohttp client for the Circle programmable wallets API"""

    def __init__(self, config: LedgerConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.retry = RetryExecutor(config.request_retry, COMPONENT, retry_on=is_retryable)
        self.logger = get_logger(COMPONENT)

        self._session = session
        self._owns_session = session is None
        self._public_key_pem: Optional[str] = None

    @property
    def source_wallet_id(self) -> str:
        return self.config.source_wallet_id

    async def __aenter__(self) -> "CircleLedgerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        """Close the HTTP session if this client created it"""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            )
            self._owns_session = True
        return self._session

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}{path}"

        try:
            async with self._get_session().request(method, url, json=body, headers=headers) as response:
                status = response.status
                text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise LedgerError(f"Circle API {method} {path} failed: {e}") from e

        try:
            payload = json.loads(text) if text else {}
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if status >= 400:
            code = payload.get("code")
            message = payload.get("message") or text[:300]
            error_cls = LedgerRejectedError if 400 <= status < 500 and status != 429 else LedgerError
            raise error_cls(f"Circle API {status}: {message}", status=status, code=code)

        return payload

    async def _call(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.retry.run(lambda: self._request(method, path, body))

    @staticmethod
    def _data(payload: Dict[str, Any], path: str) -> Dict[str, Any]:
        data = payload.get("data")
        if not isinstance(data, dict):
            raise LedgerError(f"Malformed Circle API response for {path}: missing data")
        return data

    # ------------------------------------------------------------------
    # WalletLedger
    # ------------------------------------------------------------------

    async def get_balance(self, wallet_id: str) -> List[WalletBalance]:
        path = f"/wallets/{wallet_id}/balances"
        data = self._data(await self._call("GET", path), path)
        return [
            WalletBalance(token=TokenInfo(**entry["token"]), amount=str(entry["amount"]))
            for entry in data.get("tokenBalances") or []
        ]

    async def get_wallet_address(self, wallet_id: str) -> str:
        path = f"/wallets/{wallet_id}"
        data = self._data(await self._call("GET", path), path)
        try:
            return data["wallet"]["address"]
        except (KeyError, TypeError) as e:
            raise LedgerError(f"Malformed Circle API response for {path}: no wallet address") from e

    async def _entity_secret_ciphertext(self) -> str:
        if self._public_key_pem is None:
            path = "/config/entity/publicKey"
            data = self._data(await self._request("GET", path), path)
            self._public_key_pem = data["publicKey"]
        return encrypt_entity_secret(self.config.entity_secret_hex, self._public_key_pem)

    async def transfer(
        self,
        token_id: str,
        amount: str,
        destination_address: str,
        idempotency_key: str
    ) -> TransferInitResult:
        path = "/developer/transactions/transfer"

        async def initiate() -> str:
            # Each request needs a fresh ciphertext
            payload = {
                "idempotencyKey": idempotency_key,
                "walletId": self.source_wallet_id,
                "tokenId": token_id,
                "destinationAddress": destination_address,
                "amounts": [amount],
                "feeLevel": self.config.fee_level,
                "entitySecretCiphertext": await self._entity_secret_ciphertext(),
            }
            data = self._data(await self._request("POST", path, payload), path)
            return data["id"]

        try:
            transaction_id = await self.retry.run(initiate)
        except LedgerRejectedError as e:
            self.logger.warning(
                "Transfer rejected",
                context={"idempotency_key": idempotency_key, "error": str(e)}
            )
            return TransferInitResult(success=False, amount=amount, error=str(e))

        self.logger.info(
            "Transfer initiated",
            context={
                "transaction_id": transaction_id,
                "amount": amount,
                "destination": destination_address,
                "idempotency_key": idempotency_key,
            }
        )
        return TransferInitResult(success=True, transaction_id=transaction_id, amount=amount)

    async def wait_for_transaction(
        self,
        transaction_id: str,
        max_attempts: Optional[int] = None,
        interval_seconds: Optional[float] = None
    ) -> TransferResult:
        max_attempts = max_attempts if max_attempts is not None else self.config.confirm_max_attempts
        interval = interval_seconds if interval_seconds is not None else self.config.confirm_interval_seconds
        path = f"/transactions/{transaction_id}"

        for attempt in range(1, max_attempts + 1):
            await asyncio.sleep(interval)

            data = self._data(await self._call("GET", path), path)
            tx = data.get("transaction") or {}
            state = tx.get("state")

            if state == "COMPLETE":
                return TransferResult(
                    success=True,
                    transaction_id=transaction_id,
                    tx_hash=tx.get("txHash"),
                    status=TransferStatus.COMPLETE,
                )
            if state in TERMINAL_FAILURE_STATES:
                return TransferResult(
                    success=False,
                    transaction_id=transaction_id,
                    tx_hash=tx.get("txHash"),
                    status=TERMINAL_FAILURE_STATES[state],
                    error=f"Transaction {state}",
                )

            self.logger.debug(
                "Transaction pending",
                context={"transaction_id": transaction_id, "state": state, "attempt": attempt}
            )

        return TransferResult(
            success=False,
            transaction_id=transaction_id,
            status=TransferStatus.TIMEOUT,
            error=f"Timeout after {max_attempts} attempts",
        )
