"""
Prometheus Metrics Server

Exposes watcher and settlement metrics via an aiohttp HTTP endpoint
for Prometheus scraping. One-shot commands push to a Pushgateway instead.

Metrics:
- Per-chain pool price and current spread
- Poll cycles (completed, failed, skipped)
- Discrepancies detected, by direction
- Settlement outcomes and settled volume
"""

from decimal import Decimal
from typing import Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST, REGISTRY, Counter, Gauge, Info, generate_latest, push_to_gateway
)

from .logging_config import get_logger
from .types import PriceDiscrepancy, PriceSnapshot, SettlementRecord


# Prometheus metrics
chain_price_gauge = Gauge(
    'crossvault_chain_price',
    'Latest pool price (quote per base) by chain',
    ['chain']
)

spread_bps_gauge = Gauge(
    'crossvault_spread_bps',
    'Latest cross-chain spread in basis points'
)

poll_cycles_counter = Counter(
    'crossvault_poll_cycles_total',
    'Price poll cycles by outcome',
    ['outcome']
)

discrepancies_counter = Counter(
    'crossvault_discrepancies_total',
    'Discrepancies at or above threshold by direction',
    ['direction']
)

settlements_counter = Counter(
    'crossvault_settlements_total',
    'Settlement attempts by outcome',
    ['outcome']
)

settled_volume_counter = Counter(
    'crossvault_settled_volume_total',
    'Total settlement token amount moved into the vault'
)

watcher_info = Info(
    'crossvault_watcher',
    'Chains watched by this process'
)


def settlement_outcome(record: SettlementRecord) -> str:
    """Outcome label for a settlement record"""
    if record.settled:
        return "settled"
    if record.dry_run and record.error is None:
        return "dry_run"
    return "failed"


class MetricsServer:
    """
    HTTP server that exposes Prometheus metrics.

    Serves metrics at /metrics and a liveness check at /health.
    """

    def __init__(self, port: int = 8000, host: str = '0.0.0.0'):
        self.port = port
        self.host = host
        self.logger = get_logger("MetricsServer")
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self._running = False

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/metrics', self.handle_metrics)
        app.router.add_get('/health', self.handle_health)
        return app

    async def start(self):
        """Start the metrics HTTP server"""
        self.app = self.create_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        self._running = True
        self.logger.info(
            "Metrics server started",
            context={"url": f"http://{self.host}:{self.port}/metrics"}
        )

    async def stop(self):
        """Stop the metrics HTTP server"""
        self._running = False

        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        self.logger.info("Metrics server stopped")

    async def handle_metrics(self, request: web.Request) -> web.Response:
        """Return Prometheus metrics in text format"""
        return web.Response(
            body=generate_latest(),
            headers={'Content-Type': CONTENT_TYPE_LATEST}
        )

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.Response(text="OK", status=200)

    @staticmethod
    def record_snapshot(snapshot: PriceSnapshot):
        """Update price and spread gauges from a completed poll"""
        chain_price_gauge.labels(chain=snapshot.chain_a.chain).set(snapshot.chain_a.price)
        chain_price_gauge.labels(chain=snapshot.chain_b.chain).set(snapshot.chain_b.price)
        spread_bps_gauge.set(snapshot.spread_bps)

    @staticmethod
    def record_discrepancy(discrepancy: PriceDiscrepancy):
        discrepancies_counter.labels(direction=discrepancy.direction.value).inc()

    @staticmethod
    def record_poll_cycles(completed: int = 0, failed: int = 0, skipped: int = 0):
        """Add poll cycle counts since the last call"""
        if completed:
            poll_cycles_counter.labels(outcome='completed').inc(completed)
        if failed:
            poll_cycles_counter.labels(outcome='failed').inc(failed)
        if skipped:
            poll_cycles_counter.labels(outcome='skipped').inc(skipped)

    @staticmethod
    def record_settlement(record: SettlementRecord):
        settlements_counter.labels(outcome=settlement_outcome(record)).inc()
        if record.settled and record.settle_amount:
            settled_volume_counter.inc(float(Decimal(record.settle_amount)))

    @staticmethod
    def set_watcher_info(chain_a: str, chain_b: str, threshold_bps: int, version: str):
        watcher_info.info({
            'chain_a': chain_a,
            'chain_b': chain_b,
            'threshold_bps': str(threshold_bps),
            'version': version,
        })

    @staticmethod
    def push_metrics(gateway_url: str, job: str) -> bool:
        """
        Push the registry to a Prometheus Pushgateway.

        Used by one-shot commands that exit before any scrape. A failed
        push is logged and reported, never raised.
        """
        try:
            push_to_gateway(gateway_url, job=job, registry=REGISTRY)
        except OSError as e:
            get_logger("MetricsServer").warning(
                "Metrics push failed",
                context={"gateway": gateway_url, "job": job, "error": str(e)}
            )
            return False
        return True
