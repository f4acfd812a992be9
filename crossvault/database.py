"""
Settlement Record Persistence

SQLAlchemy model and connection handling for settlement records. The
orchestrator never writes here itself; the CLI persists records when a
database URL is configured.
"""

from typing import List, Optional
from datetime import datetime
from contextlib import contextmanager
import logging

from sqlalchemy import (
    create_engine, Column, Integer, String, DateTime, Boolean, Text, Index
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError

from .types import CrossVaultError, SettlementRecord, utc_now

logger = logging.getLogger(__name__)

Base = declarative_base()


class DatabaseError(CrossVaultError):
    """Database connection or query error"""
    pass


# ============================================================================
# SQLAlchemy Models
# ============================================================================

class SettlementModel(Base):
    """Settlement attempts table"""
    __tablename__ = 'settlements'

    id = Column(Integer, primary_key=True, autoincrement=True)
    recorded_at = Column(DateTime, nullable=False, index=True)

    session_id = Column(String(128), nullable=False, index=True)
    profit_amount = Column(String(78), nullable=False)
    settle_amount = Column(String(78), nullable=True)

    # Outcome
    settled = Column(Boolean, nullable=False, default=False, index=True)
    dry_run = Column(Boolean, nullable=False, default=False)
    transaction_id = Column(String(128), nullable=True)
    tx_hash = Column(String(66), nullable=True, index=True)
    vault_address = Column(String(128), nullable=True)
    vault_balance_before = Column(String(78), nullable=True)
    vault_balance_after = Column(String(78), nullable=True)
    settled_at = Column(DateTime, nullable=True)
    error = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_session_settled', 'session_id', 'settled'),
    )

    def to_record(self) -> SettlementRecord:
        return SettlementRecord(
            session_id=self.session_id,
            profit_amount=self.profit_amount,
            settled=self.settled,
            dry_run=self.dry_run,
            settle_amount=self.settle_amount,
            transaction_id=self.transaction_id,
            tx_hash=self.tx_hash,
            vault_address=self.vault_address,
            vault_balance_before=self.vault_balance_before,
            vault_balance_after=self.vault_balance_after,
            settled_at=self.settled_at,
            error=self.error,
        )


# ============================================================================
# Database Manager
# ============================================================================

class DatabaseManager:
    """Database connection manager"""

    def __init__(self, url: str):
        self.url = url
        try:
            self.engine = create_engine(url, pool_pre_ping=True)
            self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Database initialization failed: {e}") from e
        logger.info("Database engine created")

    def create_tables(self):
        """Create all tables"""
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Table creation failed: {e}") from e

    @contextmanager
    def get_session(self) -> Session:
        """Get database session with automatic cleanup"""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise DatabaseError(f"Database operation failed: {e}") from e
        finally:
            session.close()

    def save_settlement(self, record: SettlementRecord, recorded_at: Optional[datetime] = None) -> int:
        """Persist one settlement record and return its row id"""
        with self.get_session() as session:
            row = SettlementModel(
                recorded_at=recorded_at or utc_now(),
                session_id=record.session_id,
                profit_amount=record.profit_amount,
                settle_amount=record.settle_amount,
                settled=record.settled,
                dry_run=record.dry_run,
                transaction_id=record.transaction_id,
                tx_hash=record.tx_hash,
                vault_address=record.vault_address,
                vault_balance_before=record.vault_balance_before,
                vault_balance_after=record.vault_balance_after,
                settled_at=record.settled_at,
                error=record.error,
            )
            session.add(row)
            session.flush()
            return row.id

    def get_settlements(self, session_id: str) -> List[SettlementRecord]:
        """All recorded settlement attempts for a session, oldest first"""
        with self.get_session() as session:
            rows = (
                session.query(SettlementModel)
                .filter(SettlementModel.session_id == session_id)
                .order_by(SettlementModel.id)
                .all()
            )
            return [row.to_record() for row in rows]

    def close(self):
        self.engine.dispose()
