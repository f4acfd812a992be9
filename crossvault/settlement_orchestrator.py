"""
SettlementOrchestrator Module - profit settlement into the vault

Drives one session's realized profit through:
1. Source balance check
2. Settle amount = min(profit, available)
3. Vault balance (before) and vault address
4. Deterministic idempotency key
5. Transfer initiation
6. Confirmation polling
7. Vault balance (after)

Transfer and confirmation failures restart the whole sequence, up to
max_attempts times with a linear backoff. Every outcome is returned as
a SettlementRecord; nothing is raised to the caller.
"""

import asyncio
import hashlib
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from .config import SettlementConfig
from .ledger_client import WalletLedger
from .logging_config import get_logger
from .types import (
    SettlementError, SettlementRecord, SettlementRejectedError,
    WalletBalance, utc_now
)

COMPONENT = "SettlementOrchestrator"

NO_PROFIT_ERROR = "No profit to settle"


def derive_idempotency_key(session_id: str) -> str:
    """First 32 hex chars of SHA-256("settle:" + session_id)"""
    return hashlib.sha256(f"settle:{session_id}".encode("utf-8")).hexdigest()[:32]


def format_amount(amount: Decimal) -> str:
    """Plain decimal string without exponent or trailing zeros"""
    return format(amount.normalize(), "f")


class SettlementOrchestrator:
    """Settles session profit from the source wallet into the vault"""

    def __init__(
        self,
        ledger: WalletLedger,
        config: SettlementConfig,
        confirm_max_attempts: Optional[int] = None,
        confirm_interval_seconds: Optional[float] = None
    ):
        self.ledger = ledger
        self.config = config
        self.confirm_max_attempts = confirm_max_attempts
        self.confirm_interval_seconds = confirm_interval_seconds
        self.logger = get_logger(COMPONENT)

    def _find_token(self, balances: List[WalletBalance]) -> Optional[WalletBalance]:
        for balance in balances:
            if balance.token.symbol == self.config.token_symbol:
                return balance
        return None

    async def _vault_token_amount(self) -> str:
        balances = await self.ledger.get_balance(self.config.vault_wallet_id)
        token = self._find_token(balances)
        return token.amount if token else "0"

    async def settle_profit(
        self,
        session_id: str,
        profit_amount: Union[str, Decimal],
        dry_run: bool = False
    ) -> SettlementRecord:
        """
        Settle a session's profit.

        Args:
            session_id: Session whose profit is settled; also seeds the idempotency key
            profit_amount: Realized profit as a decimal string
            dry_run: Run the checks but stop before transferring

        Returns:
            SettlementRecord describing the outcome
        """
        profit_text = str(profit_amount)
        try:
            profit = Decimal(profit_text)
        except InvalidOperation:
            self.logger.error(
                "Invalid profit amount",
                context={"session_id": session_id, "profit_amount": profit_text}
            )
            return SettlementRecord(
                session_id=session_id,
                profit_amount=profit_text,
                error=f"Invalid profit amount: {profit_text}",
            )

        if not profit.is_finite() or profit <= 0:
            self.logger.info(
                NO_PROFIT_ERROR,
                context={"session_id": session_id, "profit_amount": profit_text}
            )
            return SettlementRecord(
                session_id=session_id,
                profit_amount=profit_text,
                error=NO_PROFIT_ERROR,
            )

        self.logger.info(
            "Starting settlement",
            context={"session_id": session_id, "profit_amount": profit_text, "dry_run": dry_run}
        )

        max_attempts = self.config.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                return await self._execute_settlement(session_id, profit_text, profit, dry_run)
            except SettlementRejectedError as e:
                self.logger.warning(
                    "Settlement rejected",
                    context={"session_id": session_id, "attempt": attempt, "error": str(e)}
                )
                return SettlementRecord(
                    session_id=session_id,
                    profit_amount=profit_text,
                    dry_run=dry_run,
                    error=str(e),
                )
            except Exception as e:
                error_msg = str(e) or type(e).__name__
                self.logger.warning(
                    f"Settlement attempt {attempt} failed",
                    context={"session_id": session_id, "attempt": attempt, "error": error_msg}
                )

                if attempt == max_attempts:
                    self.logger.error(
                        "All settlement attempts failed",
                        context={"session_id": session_id, "error": error_msg}
                    )
                    return SettlementRecord(
                        session_id=session_id,
                        profit_amount=profit_text,
                        dry_run=dry_run,
                        error=f"All {max_attempts} attempts failed: {error_msg}",
                    )

                await asyncio.sleep(self.config.retry_backoff_seconds * attempt)

    async def _execute_settlement(
        self,
        session_id: str,
        profit_text: str,
        profit: Decimal,
        dry_run: bool
    ) -> SettlementRecord:
        symbol = self.config.token_symbol

        # 1. Source balance
        source_balances = await self.ledger.get_balance(self.ledger.source_wallet_id)
        source_token = self._find_token(source_balances)
        if source_token is None:
            raise SettlementRejectedError(f"{symbol} not found in source wallet")

        # 2. Settle amount
        available = source_token.amount_decimal
        settle_amount = min(profit, available)
        if settle_amount <= 0:
            raise SettlementRejectedError(f"Insufficient balance: available={source_token.amount}")
        amount_text = format_amount(settle_amount)

        # 3. Vault balance before and vault address
        vault_before = await self._vault_token_amount()
        vault_address = await self.ledger.get_wallet_address(self.config.vault_wallet_id)

        # 4. Idempotency key
        idempotency_key = derive_idempotency_key(session_id)

        if dry_run:
            self.logger.info(
                "[DRY-RUN] Would transfer to vault",
                context={
                    "session_id": session_id,
                    "amount": amount_text,
                    "token_symbol": symbol,
                    "vault_address": vault_address,
                    "idempotency_key": idempotency_key,
                }
            )
            return SettlementRecord(
                session_id=session_id,
                profit_amount=profit_text,
                dry_run=True,
                settle_amount=amount_text,
                vault_address=vault_address,
                vault_balance_before=vault_before,
            )

        # 5. Transfer
        self.logger.info(
            "Transferring to vault",
            context={
                "session_id": session_id,
                "amount": amount_text,
                "vault_address": vault_address,
                "idempotency_key": idempotency_key,
            }
        )
        init_result = await self.ledger.transfer(
            token_id=source_token.token.id,
            amount=amount_text,
            destination_address=vault_address,
            idempotency_key=idempotency_key,
        )
        if not init_result.success or not init_result.transaction_id:
            raise SettlementError(f"Transfer initiation failed: {init_result.error}")

        # 6. Confirmation
        final_result = await self.ledger.wait_for_transaction(
            init_result.transaction_id,
            self.confirm_max_attempts,
            self.confirm_interval_seconds,
        )
        if not final_result.success:
            raise SettlementError(
                f"Transaction {final_result.status.value}: {final_result.error}"
            )

        # 7. Vault balance after
        vault_after = await self._vault_token_amount()

        record = SettlementRecord(
            session_id=session_id,
            profit_amount=profit_text,
            settled=True,
            settle_amount=amount_text,
            transaction_id=init_result.transaction_id,
            tx_hash=final_result.tx_hash,
            vault_address=vault_address,
            vault_balance_before=vault_before,
            vault_balance_after=vault_after,
            settled_at=utc_now(),
        )

        self.logger.info(
            "Settlement completed",
            context={
                "session_id": session_id,
                "tx_hash": final_result.tx_hash,
                "vault_balance_before": vault_before,
                "vault_balance_after": vault_after,
            }
        )
        return record
