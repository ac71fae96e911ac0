"""Bounded-concurrency batch scheduler."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Sequence

from ..errors import ItemTimeout
from ..models.migration import MigrationStats, describe_item, utcnow

logger = logging.getLogger(__name__)

Processor = Callable[[Any], Awaitable[bool]]


def progress_interval(total: int) -> int:
    """Report progress every max(50, total // 10) items."""
    return max(50, total // 10)


class BatchScheduler:
    """
    Runs independent item migrations in waves of bounded size.

    Every item is attempted exactly once. Outcomes within a wave are
    collected with ``return_exceptions=True`` so one failing item never
    prevents siblings (in the same or a later wave) from being attempted:

    - processor returns True  -> migrated
    - processor returns False -> skipped
    - processor raises        -> skipped, recorded as {item, error}

    The per-item timeout cancels the awaiting task only. A blocking store call
    already running in a worker thread (``asyncio.to_thread``) is not
    interrupted; it is bounded by the store's own request timeout and may
    still land after the item was counted as skipped. Upserts are
    idempotent, so a later run converges on the same row.
    """

    def __init__(
        self,
        item_timeout: Optional[float] = None,
        dry_run: bool = False,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the scheduler.

        Args:
            item_timeout: Seconds allowed per item pipeline (None = unbounded)
            dry_run: Only affects the progress line prefix
            clock: Monotonic clock, injectable for tests
        """
        self.item_timeout = item_timeout
        self.dry_run = dry_run
        self._clock = clock

    async def _run_item(self, processor: Processor, item: Any) -> bool:
        if not self.item_timeout:
            return await processor(item)
        try:
            return await asyncio.wait_for(processor(item), timeout=self.item_timeout)
        except asyncio.TimeoutError as e:
            raise ItemTimeout(self.item_timeout) from e

    async def run(
        self,
        items: Sequence[Any],
        processor: Processor,
        concurrency: int,
        label: str = "items"
    ) -> MigrationStats:
        """
        Process all items and return aggregated stats.

        Args:
            items: Items to process
            processor: Async per-item function returning success
            concurrency: Maximum items in flight per wave
            label: Entity name used in stats and progress lines
        """
        stats = MigrationStats(entity=label, total=len(items))
        stats.started_at = utcnow()

        total = len(items)
        concurrency = max(1, concurrency)
        interval = progress_interval(total)
        start = self._clock()
        next_report = interval
        mode = "[DRY-RUN] " if self.dry_run else ""

        for offset in range(0, total, concurrency):
            wave = items[offset:offset + concurrency]
            outcomes = await asyncio.gather(
                *(self._run_item(processor, item) for item in wave),
                return_exceptions=True,
            )

            for item, outcome in zip(wave, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        # KeyboardInterrupt / SystemExit / cancellation
                        raise outcome
                    stats.skipped += 1
                    stats.add_error(item, outcome)
                    logger.error(f"{mode}Error migrating {label} {describe_item(item)}: {outcome}")
                elif outcome is True:
                    stats.migrated += 1
                else:
                    stats.skipped += 1

            processed = min(offset + concurrency, total)
            if processed >= next_report or processed >= total:
                while next_report <= processed:
                    next_report += interval
                elapsed = self._clock() - start
                if elapsed > 0:
                    rate = processed / elapsed
                    remaining = total - processed
                    eta = f", ETA: {remaining / rate:.1f}s" if remaining > 0 and rate > 0 else ""
                    logger.info(
                        f"{mode}Processed {processed}/{total} {label} "
                        f"({rate:.1f} items/sec{eta})"
                    )

        stats.completed_at = utcnow()
        return stats
