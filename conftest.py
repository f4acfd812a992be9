"""
Pytest configuration and shared fixtures for CrossVault

This module provides shared fixtures for:
- Chain, watcher and settlement configuration
- An in-memory wallet ledger
- Test data generators
"""

from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from crossvault.config import ChainConfig, SettlementConfig, WatcherConfig
from crossvault.ledger_client import WalletLedger
from crossvault.types import (
    ChainPrice, RetryOptions, TokenInfo, TransferInitResult, TransferResult,
    TransferStatus, WalletBalance
)


POOL_ID = "0x" + "ab" * 32
WETH = "0x4200000000000000000000000000000000000006"
BASE_USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
UNICHAIN_USDC = "0x31d0220469e10c4E71834a79b1f276d740d3768F"

SOURCE_WALLET_ID = "wallet-source"
VAULT_WALLET_ID = "wallet-vault"
VAULT_ADDRESS = "0x9999999999999999999999999999999999999999"


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_collection_modifyitems(config, items):
    """Add markers automatically based on test file"""
    for item in items:
        if "test_price_watcher" in item.nodeid or "test_chain_reader" in item.nodeid:
            item.add_marker(pytest.mark.watcher)
        elif "test_settlement" in item.nodeid or "test_session_source" in item.nodeid:
            item.add_marker(pytest.mark.settlement)
        elif "test_ledger_client" in item.nodeid:
            item.add_marker(pytest.mark.ledger)

        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def fast_retry():
    """Retry options with no waiting between attempts"""
    return RetryOptions(max_retries=2, base_delay=0, max_delay=0, backoff_multiplier=2)


@pytest.fixture
def chain_a_config():
    return ChainConfig(
        name="base-sepolia",
        chain_id=84532,
        rpc_url="http://localhost:8545",
        pool_id=POOL_ID,
        base_token_address=WETH,
        quote_token_address=BASE_USDC,
    )


@pytest.fixture
def chain_b_config():
    return ChainConfig(
        name="unichain-sepolia",
        chain_id=1301,
        rpc_url="http://localhost:8546",
        pool_id=POOL_ID,
        base_token_address=WETH,
        quote_token_address=UNICHAIN_USDC,
    )


@pytest.fixture
def watcher_config(fast_retry):
    return WatcherConfig(poll_interval_seconds=0.05, threshold_bps=50, read_retry=fast_retry)


@pytest.fixture
def settlement_config():
    return SettlementConfig(
        vault_wallet_id=VAULT_WALLET_ID,
        token_symbol="USDC",
        max_attempts=3,
        retry_backoff_seconds=0,
    )


# ============================================================================
# Test Data Generators
# ============================================================================

def make_chain_price(chain: str, price: float, tick: int = 0) -> ChainPrice:
    return ChainPrice(chain=chain, sqrt_price_x96=1, tick=tick, price=price)


# ============================================================================
# In-memory Wallet Ledger
# ============================================================================

class FakeLedger(WalletLedger):
    """
    In-memory WalletLedger.

    confirm_outcomes: statuses returned by successive wait_for_transaction
        calls (COMPLETE once exhausted). COMPLETE moves the amount from the
        source wallet to the vault.
    transfer_failures: errors returned by successive transfer calls
        before transfers start succeeding.
    raise_once: method name -> exceptions raised by its next calls.
    """

    def __init__(
        self,
        source_balance: str = "50",
        vault_balance: str = "50",
        symbol: str = "USDC",
    ):
        self.symbol = symbol
        self.balances: Dict[str, Decimal] = {
            SOURCE_WALLET_ID: Decimal(source_balance),
            VAULT_WALLET_ID: Decimal(vault_balance),
        }
        self.addresses = {VAULT_WALLET_ID: VAULT_ADDRESS}

        self.calls: List[tuple] = []
        self.transfers: List[dict] = []
        self.confirm_outcomes: List[TransferStatus] = []
        self.transfer_failures: List[str] = []
        self.raise_once: Dict[str, List[Exception]] = {}

    @property
    def source_wallet_id(self) -> str:
        return SOURCE_WALLET_ID

    def _maybe_raise(self, method: str):
        pending = self.raise_once.get(method)
        if pending:
            raise pending.pop(0)

    def calls_to(self, method: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method]

    async def get_balance(self, wallet_id: str) -> List[WalletBalance]:
        self.calls.append(("get_balance", wallet_id))
        self._maybe_raise("get_balance")
        amount = self.balances.get(wallet_id)
        if amount is None:
            return []
        token = TokenInfo(id=f"token-{self.symbol}", blockchain="ARC-TESTNET", symbol=self.symbol, decimals=6)
        return [WalletBalance(token=token, amount=format(amount.normalize(), "f"))]

    async def get_wallet_address(self, wallet_id: str) -> str:
        self.calls.append(("get_wallet_address", wallet_id))
        self._maybe_raise("get_wallet_address")
        return self.addresses[wallet_id]

    async def transfer(
        self,
        token_id: str,
        amount: str,
        destination_address: str,
        idempotency_key: str
    ) -> TransferInitResult:
        self.calls.append(("transfer", idempotency_key))
        self._maybe_raise("transfer")
        self.transfers.append({
            "token_id": token_id,
            "amount": amount,
            "destination_address": destination_address,
            "idempotency_key": idempotency_key,
        })
        if self.transfer_failures:
            return TransferInitResult(success=False, amount=amount, error=self.transfer_failures.pop(0))
        return TransferInitResult(success=True, transaction_id=f"tx-{len(self.transfers)}", amount=amount)

    async def wait_for_transaction(
        self,
        transaction_id: str,
        max_attempts: Optional[int] = None,
        interval_seconds: Optional[float] = None
    ) -> TransferResult:
        self.calls.append(("wait_for_transaction", transaction_id))
        self._maybe_raise("wait_for_transaction")
        outcome = self.confirm_outcomes.pop(0) if self.confirm_outcomes else TransferStatus.COMPLETE

        if outcome == TransferStatus.COMPLETE:
            amount = Decimal(self.transfers[-1]["amount"])
            self.balances[SOURCE_WALLET_ID] -= amount
            self.balances[VAULT_WALLET_ID] += amount
            return TransferResult(
                success=True,
                transaction_id=transaction_id,
                tx_hash=f"0xhash-{transaction_id}",
                status=TransferStatus.COMPLETE,
            )

        error = "Timeout after 10 attempts" if outcome == TransferStatus.TIMEOUT else f"Transaction {outcome.value}"
        return TransferResult(success=False, transaction_id=transaction_id, status=outcome, error=error)


@pytest.fixture
def fake_ledger():
    return FakeLedger()
