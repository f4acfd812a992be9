"""
Session results and the auto-settle pipeline.

A SessionResultSource reports how an off-chain trading session ended.
auto_settle() turns a completed, profitable session into a settlement.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Union

from .logging_config import get_logger
from .settlement_orchestrator import SettlementOrchestrator
from .types import SessionResult, SessionStatus, SettlementRecord

COMPONENT = "AutoSettle"


class SessionResultSource(ABC):
    """Supplies a session's net profit and completion status"""

    @abstractmethod
    async def get_result(self, session_id: str) -> SessionResult:
        """Fetch the result of session_id"""


class StaticSessionSource(SessionResultSource):
    """Reports every session as completed with a fixed net profit"""

    def __init__(
        self,
        net_profit: Union[str, Decimal] = "3",
        chain_a: str = "base-sepolia",
        chain_b: str = "unichain-sepolia",
        status: SessionStatus = SessionStatus.COMPLETED
    ):
        self.net_profit = str(net_profit)
        self.chain_a = chain_a
        self.chain_b = chain_b
        self.status = status

    async def get_result(self, session_id: str) -> SessionResult:
        return SessionResult(
            session_id=session_id,
            chain_a=self.chain_a,
            chain_b=self.chain_b,
            net_profit=self.net_profit,
            status=self.status,
        )


async def auto_settle(
    session_id: str,
    source: SessionResultSource,
    orchestrator: SettlementOrchestrator,
    dry_run: bool = False
) -> SettlementRecord:
    """Fetch a session's result and settle its profit when it completed"""
    logger = get_logger(COMPONENT)
    result = await source.get_result(session_id)

    logger.info(
        "Session result fetched",
        context={
            "session_id": session_id,
            "chain_a": result.chain_a,
            "chain_b": result.chain_b,
            "net_profit": result.net_profit,
            "status": result.status.value,
        }
    )

    if result.status != SessionStatus.COMPLETED:
        logger.info(
            "Session not completed, skipping settlement",
            context={"session_id": session_id, "status": result.status.value}
        )
        return SettlementRecord(
            session_id=session_id,
            profit_amount=result.net_profit,
            dry_run=dry_run,
            error=f"Session status: {result.status.value}",
        )

    return await orchestrator.settle_profit(session_id, result.net_profit, dry_run=dry_run)
