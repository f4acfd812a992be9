"""
PriceWatcher Module - cross-chain price discrepancy detection

Polls the same pool pair on two chains at a fixed interval:
- Reads both chains concurrently
- Computes the spread in basis points
- Keeps exactly one latest snapshot (replaced, never mutated)
- Notifies subscribers when the spread reaches the threshold
"""

import asyncio
from typing import Callable, List, Optional

from .chain_reader import ChainPriceReader
from .config import ChainConfig, WatcherConfig
from .logging_config import get_logger
from .price_math import compute_spread_bps, discrepancy_direction
from .types import PriceDiscrepancy, PriceSnapshot, WatcherState

COMPONENT = "PriceWatcher"

DiscrepancyCallback = Callable[[PriceDiscrepancy], None]

# Queued by DiscrepancyChannel.close
_CLOSED = object()


class Subscription:
    """Handle returned by PriceWatcher.on_discrepancy"""

    def __init__(self, watcher: "PriceWatcher", callback: DiscrepancyCallback):
        self._watcher = watcher
        self.callback = callback
        self.active = True

    def cancel(self):
        """Stop receiving discrepancies. Safe to call more than once."""
        if self.active:
            self.active = False
            self._watcher._remove_subscription(self)


class DiscrepancyChannel:
    """
    Buffered async stream of discrepancies.

    A full buffer drops the new discrepancy for this channel only.
    Iteration ends once the channel is closed and drained.
    """

    def __init__(self, watcher: "PriceWatcher", maxsize: int = 0):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self._closed = False
        self._subscription = watcher.on_discrepancy(self._offer)
        self._logger = watcher.logger

    def _offer(self, discrepancy: PriceDiscrepancy):
        try:
            self.queue.put_nowait(discrepancy)
        except asyncio.QueueFull:
            self.dropped += 1
            self._logger.warning(
                "Discrepancy channel full, dropping discrepancy",
                context={"dropped": self.dropped, "maxsize": self.queue.maxsize}
            )

    async def get(self) -> Optional[PriceDiscrepancy]:
        """Next discrepancy, or None once the channel is closed and drained"""
        if self._closed and self.queue.empty():
            return None
        item = await self.queue.get()
        if item is _CLOSED:
            return None
        return item

    def close(self):
        """Unsubscribe; buffered discrepancies stay readable"""
        if self._closed:
            return
        self._closed = True
        self._subscription.cancel()
        # Wakes a reader blocked on an empty queue. A full queue has no
        # blocked reader, and get() sees the closed flag once drained.
        try:
            self.queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    def __aiter__(self):
        return self

    async def __anext__(self) -> PriceDiscrepancy:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


class PriceWatcher:
    """Two-chain price watcher with threshold notifications"""

    def __init__(
        self,
        chain_a: ChainConfig,
        chain_b: ChainConfig,
        config: WatcherConfig,
        reader_a: Optional[ChainPriceReader] = None,
        reader_b: Optional[ChainPriceReader] = None
    ):
        self.chain_a = chain_a
        self.chain_b = chain_b
        self.config = config
        self.reader_a = reader_a or ChainPriceReader(chain_a, config.read_retry)
        self.reader_b = reader_b or ChainPriceReader(chain_b, config.read_retry)
        self.logger = get_logger(COMPONENT)

        self._subscriptions: List[Subscription] = []
        self._latest_snapshot: Optional[PriceSnapshot] = None

        self._state = WatcherState.STOPPED
        self._schedule_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None

        # Cycle counters
        self.cycles_completed = 0
        self.cycles_failed = 0
        self.cycles_skipped = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == WatcherState.RUNNING

    async def start(self):
        """
        Start polling. No-op when already running.

        The first poll is dispatched immediately but not awaited; later
        polls follow every poll_interval_seconds.
        """
        if self._state == WatcherState.RUNNING:
            return

        self._state = WatcherState.RUNNING
        self.logger.info(
            "Starting price watcher",
            context={
                "chain_a": self.chain_a.name,
                "chain_b": self.chain_b.name,
                "poll_interval_seconds": self.config.poll_interval_seconds,
                "threshold_bps": self.config.threshold_bps,
            }
        )

        self._dispatch_poll()
        self._schedule_task = asyncio.create_task(self._schedule_loop())

    async def stop(self):
        """
        Cancel the recurring schedule. Idempotent.

        A poll already in flight is left to finish.
        """
        if self._state == WatcherState.STOPPED:
            return

        self._state = WatcherState.STOPPED
        task, self._schedule_task = self._schedule_task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.logger.info("Stopped price watcher")

    async def _schedule_loop(self):
        while self._state == WatcherState.RUNNING:
            await asyncio.sleep(self.config.poll_interval_seconds)
            if self._state != WatcherState.RUNNING:
                break
            self._dispatch_poll()

    def _dispatch_poll(self):
        if self._poll_task is not None and not self._poll_task.done():
            self.cycles_skipped += 1
            self.logger.warning(
                "Previous poll cycle still running, skipping tick",
                context={"skipped": self.cycles_skipped}
            )
            return
        self._poll_task = asyncio.create_task(self._safe_poll())

    async def _safe_poll(self):
        try:
            await self.poll_once()
        except Exception as e:
            self.cycles_failed += 1
            self.logger.error("Poll cycle failed", context={"error": str(e)})

    # ------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------

    async def poll_once(self) -> PriceSnapshot:
        """
        Run one poll cycle and return the new snapshot.

        Raises whatever the chain reads raised; the scheduled loop catches it.
        """
        # Both reads run to completion before the cycle proceeds
        results = await asyncio.gather(
            self.reader_a.read_price(),
            self.reader_b.read_price(),
            return_exceptions=True,
        )
        for chain, result in zip((self.chain_a, self.chain_b), results):
            if isinstance(result, BaseException):
                self.logger.warning(
                    "Chain price read failed",
                    context={"chain": chain.name, "error": str(result)}
                )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        price_a, price_b = results
        spread_bps = compute_spread_bps(price_a.price, price_b.price)

        snapshot = PriceSnapshot(chain_a=price_a, chain_b=price_b, spread_bps=spread_bps)
        self._latest_snapshot = snapshot
        self.cycles_completed += 1

        self.logger.info(
            "Price snapshot",
            context={
                "price_a": price_a.price,
                "price_b": price_b.price,
                "spread_bps": round(spread_bps, 2),
            }
        )

        if spread_bps >= self.config.threshold_bps:
            discrepancy = PriceDiscrepancy(
                snapshot=snapshot,
                direction=discrepancy_direction(price_a.price, price_b.price),
            )
            self.logger.info(
                "Price discrepancy detected",
                context={
                    "spread_bps": round(spread_bps, 2),
                    "direction": discrepancy.direction.value,
                }
            )
            self._notify(discrepancy)

        return snapshot

    def _notify(self, discrepancy: PriceDiscrepancy):
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            try:
                subscription.callback(discrepancy)
            except Exception as e:
                self.logger.error(
                    "Discrepancy subscriber failed",
                    context={"error": str(e)},
                    exc_info=True
                )

    # ------------------------------------------------------------------
    # Subscribers and snapshot
    # ------------------------------------------------------------------

    def on_discrepancy(self, callback: DiscrepancyCallback) -> Subscription:
        """Register a synchronous callback; called in registration order"""
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def open_channel(self, maxsize: int = 0) -> DiscrepancyChannel:
        """Subscribe through a buffered async channel (maxsize 0 = unbounded)"""
        return DiscrepancyChannel(self, maxsize)

    def _remove_subscription(self, subscription: Subscription):
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def latest_snapshot(self) -> Optional[PriceSnapshot]:
        """Snapshot from the most recently completed cycle"""
        return self._latest_snapshot
