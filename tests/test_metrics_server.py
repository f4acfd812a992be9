"""
Tests for the Prometheus metrics server
"""

from unittest.mock import patch

import pytest
from aiohttp import test_utils
from prometheus_client import REGISTRY

from conftest import make_chain_price
from crossvault.metrics_server import MetricsServer, settlement_outcome
from crossvault.types import Direction, PriceDiscrepancy, PriceSnapshot, SettlementRecord


def sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {})


def create_snapshot(price_a=1.0, price_b=1.02):
    return PriceSnapshot(
        chain_a=make_chain_price("base-sepolia", price_a),
        chain_b=make_chain_price("unichain-sepolia", price_b),
        spread_bps=198.02,
    )


def test_record_snapshot_sets_gauges():
    MetricsServer.record_snapshot(create_snapshot(2500.0, 2510.0))

    assert sample("crossvault_chain_price", {"chain": "base-sepolia"}) == 2500.0
    assert sample("crossvault_chain_price", {"chain": "unichain-sepolia"}) == 2510.0
    assert sample("crossvault_spread_bps") == 198.02


def test_record_discrepancy_counts_by_direction():
    labels = {"direction": "A_CHEAPER"}
    before = sample("crossvault_discrepancies_total", labels) or 0

    MetricsServer.record_discrepancy(PriceDiscrepancy(snapshot=create_snapshot(), direction=Direction.A_CHEAPER))

    assert sample("crossvault_discrepancies_total", labels) == before + 1


def test_record_settlement_outcomes():
    settled = SettlementRecord(session_id="s", profit_amount="3", settled=True, settle_amount="3")
    before_volume = sample("crossvault_settled_volume_total") or 0

    MetricsServer.record_settlement(settled)

    assert sample("crossvault_settled_volume_total") == before_volume + 3
    assert settlement_outcome(settled) == "settled"
    assert settlement_outcome(SettlementRecord(session_id="s", profit_amount="3", dry_run=True)) == "dry_run"
    assert settlement_outcome(SettlementRecord(session_id="s", profit_amount="0", error="No profit to settle")) == "failed"


@pytest.mark.asyncio
async def test_http_endpoints():
    server = MetricsServer(port=0)
    MetricsServer.record_poll_cycles(completed=2, failed=1)

    async with test_utils.TestClient(test_utils.TestServer(server.create_app())) as client:
        health = await client.get("/health")
        assert health.status == 200
        assert await health.text() == "OK"

        metrics = await client.get("/metrics")
        assert metrics.status == 200
        body = await metrics.text()
        assert "crossvault_poll_cycles_total" in body


def test_push_metrics_sends_registry():
    with patch("crossvault.metrics_server.push_to_gateway") as push:
        assert MetricsServer.push_metrics("localhost:9091", "crossvault_settle") is True

    push.assert_called_once_with("localhost:9091", job="crossvault_settle", registry=REGISTRY)


def test_push_metrics_failure_is_reported_not_raised():
    with patch("crossvault.metrics_server.push_to_gateway", side_effect=OSError("connection refused")), \
            patch("crossvault.metrics_server.get_logger") as get_logger:
        assert MetricsServer.push_metrics("localhost:9091", "crossvault_settle") is False

    get_logger.return_value.warning.assert_called_once()
