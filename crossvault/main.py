"""
Command Line Entry Point

crossvault watch   - run the cross-chain price watcher until signalled
crossvault settle  - settle one session's profit into the vault
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import CrossVaultConfig, SettlementConfig, load_config
from .database import DatabaseManager
from .ledger_client import CircleLedgerClient
from .logging_config import init_logging, get_logger
from .metrics_server import MetricsServer
from .price_watcher import PriceWatcher
from .session_source import StaticSessionSource, auto_settle
from .settlement_orchestrator import SettlementOrchestrator
from .types import CrossVaultError, PriceDiscrepancy, SettlementRecord


class WatcherBot:
    """
    Runs the price watcher with optional metrics export.

    Responsibilities:
    - Start and stop the watcher and the metrics server
    - Log every discrepancy
    - Publish snapshot and cycle metrics
    """

    def __init__(self, config: CrossVaultConfig, watcher: Optional[PriceWatcher] = None):
        self.config = config
        self.logger = get_logger("crossvault")
        self.watcher = watcher or PriceWatcher(config.chain_a, config.chain_b, config.watcher)
        self.metrics_server: Optional[MetricsServer] = None
        if config.metrics.enabled:
            self.metrics_server = MetricsServer(port=config.metrics.port)

        self._shutdown_event = asyncio.Event()
        self._monitor_task: Optional[asyncio.Task] = None
        self._exported = (0, 0, 0)

    def handle_discrepancy(self, discrepancy: PriceDiscrepancy):
        snapshot = discrepancy.snapshot
        self.logger.info(
            "Arbitrage opportunity",
            context={
                "direction": discrepancy.direction.value,
                "spread_bps": round(snapshot.spread_bps, 2),
                snapshot.chain_a.chain: snapshot.chain_a.price,
                snapshot.chain_b.chain: snapshot.chain_b.price,
            }
        )
        if self.metrics_server:
            MetricsServer.record_discrepancy(discrepancy)

    def export_metrics(self):
        """Push the latest snapshot and cycle count deltas to Prometheus"""
        snapshot = self.watcher.latest_snapshot
        if snapshot is not None:
            MetricsServer.record_snapshot(snapshot)

        current = (
            self.watcher.cycles_completed,
            self.watcher.cycles_failed,
            self.watcher.cycles_skipped,
        )
        completed, failed, skipped = (now - before for now, before in zip(current, self._exported))
        MetricsServer.record_poll_cycles(completed, failed, skipped)
        self._exported = current

    async def monitoring_loop(self):
        while True:
            await asyncio.sleep(self.config.watcher.poll_interval_seconds)
            self.export_metrics()

    async def start(self):
        """Start the watcher and block until stop() is called"""
        self.watcher.on_discrepancy(self.handle_discrepancy)

        if self.metrics_server:
            await self.metrics_server.start()
            MetricsServer.set_watcher_info(
                chain_a=self.config.chain_a.name,
                chain_b=self.config.chain_b.name,
                threshold_bps=self.config.watcher.threshold_bps,
                version=__version__,
            )
            self._monitor_task = asyncio.create_task(self.monitoring_loop())

        await self.watcher.start()
        self.logger.info("CrossVault watcher started")

        await self._shutdown_event.wait()

    async def stop(self):
        """Stop the bot gracefully"""
        self.logger.info("Stopping CrossVault watcher...")
        await self.watcher.stop()

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        if self.metrics_server:
            await self.metrics_server.stop()

        self._shutdown_event.set()
        self.logger.info("CrossVault watcher stopped")


def _setup_logging(config: CrossVaultConfig):
    init_logging(
        log_level=config.logging.level,
        log_dir=config.logging.log_dir,
        enable_cloudwatch=config.logging.cloudwatch_enabled,
        cloudwatch_region=config.logging.cloudwatch_region,
        cloudwatch_log_group=config.logging.cloudwatch_log_group,
    )


async def run_watch(config: CrossVaultConfig) -> int:
    logger = get_logger("main")
    logger.info(
        "crossvault_starting",
        context={
            "chain_a": config.chain_a.name,
            "chain_b": config.chain_b.name,
            "poll_interval_seconds": config.watcher.poll_interval_seconds,
            "threshold_bps": config.watcher.threshold_bps,
        }
    )

    bot = WatcherBot(config)
    loop = asyncio.get_running_loop()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, initiating graceful shutdown...")
        loop.call_soon_threadsafe(lambda: asyncio.ensure_future(bot.stop()))

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    await bot.start()
    logger.info("CrossVault shutdown complete")
    return 0


async def run_settle(
    config: CrossVaultConfig,
    session_id: str,
    profit: str,
    dry_run: bool = False,
    ledger: Optional[CircleLedgerClient] = None
) -> SettlementRecord:
    """Settle one session and persist the record when a database is configured"""
    ledger_config = config.require_ledger()
    settlement_config = config.require_settlement()

    if dry_run:
        get_logger("main").warning("DRY-RUN MODE ENABLED: no transfer will be submitted")

    client = ledger or CircleLedgerClient(ledger_config)
    try:
        orchestrator = SettlementOrchestrator(client, settlement_config)
        source = StaticSessionSource(net_profit=profit)
        record = await auto_settle(session_id, source, orchestrator, dry_run=dry_run)
    finally:
        if ledger is None:
            await client.close()

    if config.metrics.pushgateway_url:
        MetricsServer.record_settlement(record)
        MetricsServer.push_metrics(config.metrics.pushgateway_url, config.metrics.push_job)

    if config.database.url:
        db = DatabaseManager(config.database.url)
        try:
            db.create_tables()
            db.save_settlement(record)
        finally:
            db.close()

    return record


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='crossvault',
        description='Cross-chain price watcher and vault settlement'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    subparsers = parser.add_subparsers(dest='command', required=True)

    watch = subparsers.add_parser('watch', help='Watch both chains for price discrepancies')
    watch.add_argument('--config', type=Path, default=Path('config.yaml'), help='YAML configuration file')

    settle = subparsers.add_parser('settle', help="Settle a session's profit into the vault")
    settle.add_argument('--session', required=True, help='Session identifier')
    settle.add_argument('--profit', default='3', help='Realized session profit (decimal string)')
    settle.add_argument('--vault-wallet', help='Vault wallet id (overrides configuration)')
    settle.add_argument('--token-symbol', help='Settlement token symbol (overrides configuration)')
    settle.add_argument(
        '--dry-run',
        action='store_true',
        help='Run every check but do not submit the transfer'
    )
    settle.add_argument('--config', type=Path, default=Path('config.yaml'), help='YAML configuration file')

    return parser


def _apply_settle_overrides(config: CrossVaultConfig, args: argparse.Namespace) -> CrossVaultConfig:
    updates = {}
    if args.vault_wallet:
        updates['vault_wallet_id'] = args.vault_wallet
    if args.token_symbol:
        updates['token_symbol'] = args.token_symbol
    if not updates:
        return config

    if config.settlement is None:
        if 'vault_wallet_id' not in updates:
            return config
        settlement = SettlementConfig(**updates)
    else:
        settlement = config.settlement.copy(update=updates)
    return config.copy(update={'settlement': settlement})


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except CrossVaultError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    _setup_logging(config)
    logger = get_logger("main")

    try:
        if args.command == 'watch':
            return asyncio.run(run_watch(config))

        config = _apply_settle_overrides(config, args)
        record = asyncio.run(run_settle(config, args.session, args.profit, args.dry_run))
        print(json.dumps(record.to_dict(), indent=2))
        return 0 if record.settled or (record.dry_run and record.error is None) else 1

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        return 130
    except CrossVaultError as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        return 1


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
