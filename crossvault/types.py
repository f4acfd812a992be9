"""
Core Data Models and Types

Defines the data structures shared by the price watcher and the
settlement pipeline.
"""

from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from decimal import Decimal
from pydantic import BaseModel, Field, validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================

class WatcherState(str, Enum):
    """PriceWatcher run state"""
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


class Direction(str, Enum):
    """Which chain quotes the base token cheaper"""
    A_CHEAPER = "A_CHEAPER"
    B_CHEAPER = "B_CHEAPER"


class TransferStatus(str, Enum):
    """Transfer lifecycle status"""
    INITIATED = "INITIATED"
    PENDING = "PENDING"        # Any in-flight ledger state
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"        # Confirmation polling exhausted


class SessionStatus(str, Enum):
    """Off-chain session outcome"""
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# ============================================================================
# Error Types
# ============================================================================

class CrossVaultError(Exception):
    """Base exception for all crossvault errors"""
    pass


class FatalError(CrossVaultError):
    """Failure that retrying cannot fix (business rule or configuration)"""
    pass


class ConfigurationError(FatalError):
    """Configuration validation or loading error"""
    pass


class PoolNotInitializedError(FatalError):
    """Pool reports a zero square-root price"""
    pass


class RPCError(CrossVaultError):
    """RPC provider connection or response error"""
    pass


class LedgerError(CrossVaultError):
    """Wallet ledger API transport or server error"""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[Any] = None):
        super().__init__(message)
        self.status = status
        self.code = code


class LedgerRejectedError(LedgerError, FatalError):
    """Ledger rejected the request (4xx); repeating it will not help"""
    pass


class SettlementError(CrossVaultError):
    """A single settlement attempt failed"""
    pass


class SettlementRejectedError(SettlementError, FatalError):
    """Settlement cannot proceed (token missing, insufficient balance)"""
    pass


# ============================================================================
# Retry
# ============================================================================

class RetryOptions(BaseModel):
    """Bounded exponential backoff tuning (delays in seconds)"""
    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=5.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, gt=1)

    @validator('max_delay')
    def validate_max_delay(cls, v, values):
        base = values.get('base_delay')
        if base is not None and v < base:
            raise ValueError(f"max_delay {v} is below base_delay {base}")
        return v

    class Config:
        frozen = True


# ============================================================================
# Price Models
# ============================================================================

class ChainPrice(BaseModel):
    """Point-in-time pool price reading for one chain"""
    chain: str = Field(..., description="Chain name")
    sqrt_price_x96: int = Field(..., description="Raw Q64.96 square-root price")
    tick: int = Field(..., description="Current pool tick")
    price: float = Field(..., description="Quote tokens per base token")
    timestamp: datetime = Field(default_factory=utc_now)

    class Config:
        frozen = True


class PriceSnapshot(BaseModel):
    """Both chains' readings plus the spread between them"""
    chain_a: ChainPrice
    chain_b: ChainPrice
    spread_bps: float

    class Config:
        frozen = True


class PriceDiscrepancy(BaseModel):
    """Snapshot whose spread reached the configured threshold"""
    snapshot: PriceSnapshot
    direction: Direction
    detected_at: datetime = Field(default_factory=utc_now)

    class Config:
        frozen = True


# ============================================================================
# Ledger Models
# ============================================================================

class TokenInfo(BaseModel):
    """Token descriptor as reported by the wallet ledger"""
    id: str
    blockchain: str
    symbol: str
    name: str = ""
    decimals: int = 0


class WalletBalance(BaseModel):
    """One token balance of a wallet"""
    token: TokenInfo
    amount: str = Field(..., description="Decimal string")

    @property
    def amount_decimal(self) -> Decimal:
        return Decimal(self.amount)


class TransferInitResult(BaseModel):
    """Outcome of a transfer initiation request"""
    success: bool
    transaction_id: Optional[str] = None
    amount: Optional[str] = None
    error: Optional[str] = None


class TransferResult(BaseModel):
    """Outcome of one transfer after confirmation polling"""
    success: bool
    transaction_id: str
    tx_hash: Optional[str] = None
    status: TransferStatus = TransferStatus.INITIATED
    amount: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# Settlement Models
# ============================================================================

class SessionResult(BaseModel):
    """Result of an off-chain trading session"""
    session_id: str
    chain_a: str
    chain_b: str
    net_profit: str = Field(..., description="Decimal string in settlement token units")
    status: SessionStatus
    timestamp: datetime = Field(default_factory=utc_now)


class SettlementRecord(BaseModel):
    """Output of one settlement attempt for one session"""
    session_id: str
    profit_amount: str
    settled: bool = False
    dry_run: bool = False
    settle_amount: Optional[str] = None
    transaction_id: Optional[str] = None
    tx_hash: Optional[str] = None
    vault_address: Optional[str] = None
    vault_balance_before: Optional[str] = None
    vault_balance_after: Optional[str] = None
    settled_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def vault_delta(self) -> Optional[Decimal]:
        """Vault balance change observed across the settlement"""
        if self.vault_balance_before is None or self.vault_balance_after is None:
            return None
        return Decimal(self.vault_balance_after) - Decimal(self.vault_balance_before)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-friendly dictionary"""
        data = self.dict()
        data['settled_at'] = self.settled_at.isoformat() if self.settled_at else None
        delta = self.vault_delta
        data['vault_delta'] = str(delta) if delta is not None else None
        return data
