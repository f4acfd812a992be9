"""
Tests for settlement record persistence (SQLite in memory)
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from crossvault.database import DatabaseManager
from crossvault.types import SettlementRecord


@pytest.fixture
def db_manager():
    manager = DatabaseManager("sqlite:///:memory:")
    manager.create_tables()
    yield manager
    manager.close()


def create_settled_record(session_id="session-1"):
    return SettlementRecord(
        session_id=session_id,
        profit_amount="3",
        settled=True,
        settle_amount="3",
        transaction_id="tx-1",
        tx_hash="0x" + "ab" * 32,
        vault_address="0x9999999999999999999999999999999999999999",
        vault_balance_before="50",
        vault_balance_after="53",
        settled_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )


def test_save_and_load_settlement(db_manager):
    row_id = db_manager.save_settlement(create_settled_record())

    records = db_manager.get_settlements("session-1")
    assert row_id == 1
    assert len(records) == 1
    record = records[0]
    assert record.settled is True
    assert record.tx_hash == "0x" + "ab" * 32
    assert record.vault_delta == Decimal("3")
    assert record.settled_at.replace(tzinfo=None) == datetime(2026, 1, 2, 3, 4, 5)


def test_attempts_kept_in_order_per_session(db_manager):
    failed = SettlementRecord(session_id="session-1", profit_amount="3", error="All 3 attempts failed: boom")
    db_manager.save_settlement(failed)
    db_manager.save_settlement(create_settled_record())
    db_manager.save_settlement(create_settled_record("session-2"))

    records = db_manager.get_settlements("session-1")
    assert [r.settled for r in records] == [False, True]
    assert records[0].error == "All 3 attempts failed: boom"
    assert db_manager.get_settlements("unknown") == []
