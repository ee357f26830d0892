"""
Batched historical order sync.

Imports a long window of fulfilled-shipment reports in fixed-size date
batches, one report at a time:

- start(): plan batches, claim the single run slot, launch the job
- stop(): cooperative cancel; state is reset and running sync logs cancelled
- status(): snapshot copy, never blocks on I/O

Batch-scoped failures (rate limits, report failures, timeouts, bad
downloads) are recorded on the batch and the run moves on after a pause.
Only credential failures end the run.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from amzsync.config import SyncConfig, config
from amzsync.credentials import CredentialProvider, SellerCredentials
from amzsync.events import EventBus, SyncEvent, events as default_events
from amzsync.exceptions import AlreadyRunningError, CredentialError, SyncError
from amzsync.merger import Merger
from amzsync.models import BatchResult, SyncLogStatus, SyncPhase, SyncState
from amzsync.observability import get_logger, correlation_context
from amzsync.parser import parse_report
from amzsync.planner import DateWindow, plan_batches, validate_window
from amzsync.poller import ReportPoller
from amzsync.publisher import ProgressPublisher
from amzsync.reports import ReportClient
from amzsync.resilience import CancellableWait, StopSignal, minutes_left
from amzsync.state import SyncStateStore
from amzsync.store import get_store
from amzsync.tokens import TokenManager

logger = get_logger(__name__)

RUN_SYNC_TYPE = "historical-batched"


def batch_sync_type(batch_number: int) -> str:
    return f"historical-batch-{batch_number}"


class HistoricalSyncService:
    """
    Owns the progress state and at most one background run.

    Usage:
        service = HistoricalSyncService(store)
        await service.start(batch_size_days=90, total_days=720)
        service.status().current_phase
        await service.stop()
    """

    # Grace period for a stopped run to reach a checkpoint on shutdown
    SHUTDOWN_GRACE_SECONDS = 10.0

    def __init__(
        self,
        store=None,
        client: Optional[ReportClient] = None,
        tokens: Optional[TokenManager] = None,
        credentials: Optional[CredentialProvider] = None,
        sync_config: Optional[SyncConfig] = None,
        events: Optional[EventBus] = None,
        now: Callable[[], datetime] = None,
    ):
        self.store = store
        self.settings = sync_config or config.sync
        self.events = events or default_events
        self.state = SyncStateStore()
        self.publisher = ProgressPublisher(self.state, queue_size=self.settings.stream_queue_size)

        self._client = client
        self._tokens = tokens or TokenManager(refresh_after_seconds=self.settings.token_refresh_seconds)
        self._credentials = credentials
        self._now = now or (lambda: datetime.now(timezone.utc))

        self._task: Optional[asyncio.Task] = None
        self._signal: Optional[StopSignal] = None

    # ═══════════════════════════════════════════════════════════════════════════
    # CONTROL
    # ═══════════════════════════════════════════════════════════════════════════

    async def start(self, batch_size_days: int = None, total_days: int = None) -> Dict[str, Any]:
        """
        Launch a run in the background and return immediately.

        Raises:
            AlreadyRunningError: A run is active (state untouched)
            ValidationError: Non-positive or non-integer window arguments
        """
        if self.state.is_running:
            raise AlreadyRunningError()

        batch_size_days = batch_size_days if batch_size_days is not None else self.settings.default_batch_size_days
        total_days = total_days if total_days is not None else self.settings.default_total_days
        validate_window(batch_size_days, total_days)

        windows = plan_batches(batch_size_days, total_days, now=self._now(), order=self.settings.batch_order)

        # A previous run that was stopped may still be unwinding an HTTP call
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.wait({self._task})

        if not self.state.try_begin(len(windows), now=self._now()):
            raise AlreadyRunningError()

        self._signal = StopSignal()
        self._task = asyncio.create_task(
            self._run(windows, self._signal),
            name=f"historical_sync_{batch_size_days}d_{total_days}d",
        )
        self._task.add_done_callback(self._on_task_done)

        logger.info(
            f"Historical sync started: {len(windows)} batches of {batch_size_days} days",
            extra={"batch_size_days": batch_size_days, "total_days": total_days, "order": self.settings.batch_order},
        )
        return {"totalBatches": len(windows), "batchSize": batch_size_days, "totalDays": total_days}

    async def stop(self) -> bool:
        """
        Stop the active run (if any) and reset progress.

        Returns:
            True if a run was active
        """
        was_running = self.state.is_running
        if self._signal is not None:
            self._signal.stop()
        self.state.reset()

        if self.store is not None:
            await self.store.cancel_running_sync_logs()

        if was_running:
            logger.info("Historical sync stopped by user")
            await self.events.emit(SyncEvent.SYNC_STOPPED, {"sync_type": RUN_SYNC_TYPE})
        return was_running

    def status(self) -> SyncState:
        return self.state.snapshot()

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    async def wait_until_idle(self, timeout: float = None) -> bool:
        """
        Wait for the background task to finish.

        Returns:
            True if no task is left running
        """
        task = self._task
        if task is None or task.done():
            return True
        done, _ = await asyncio.wait({task}, timeout=timeout)
        return bool(done)

    async def shutdown(self) -> None:
        """Stop the run and wait for the task; cancel it if it will not wind down."""
        await self.stop()
        if not await self.wait_until_idle(timeout=self.SHUTDOWN_GRACE_SECONDS):
            logger.warning("Historical sync did not stop in time, cancelling task")
            self._task.cancel()
            await asyncio.wait({self._task})

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self.state.finish("Cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Historical sync task crashed: {exc}", exc_info=exc)
            self.state.finish(f"Error: {exc}")

    # ═══════════════════════════════════════════════════════════════════════════
    # RUN
    # ═══════════════════════════════════════════════════════════════════════════

    async def _run(self, windows: List[DateWindow], signal: StopSignal) -> None:
        with correlation_context() as corr_id:
            started = time.monotonic()
            total = len(windows)

            if self.store is None:
                self.store = await get_store()

            client = self._client or ReportClient()
            waiter = CancellableWait(signal, tick=self.settings.tick_seconds)
            poller = ReportPoller(client, self.state, waiter, sync_config=self.settings, events=self.events)
            merger = Merger(
                self.store,
                self.state,
                chunk_size=self.settings.merge_chunk_size,
                should_stop=lambda: signal.stopped,
            )

            run_log_id = await self.store.create_sync_log(RUN_SYNC_TYPE)
            await self.events.emit(SyncEvent.SYNC_STARTED, {
                "sync_type": RUN_SYNC_TYPE,
                "total_batches": total,
                "correlation_id": corr_id,
            })

            try:
                provider = self._credentials or CredentialProvider(self.store)
                credentials = await provider.get_credentials()
                self._tokens.invalidate()
                await self._tokens.ensure_token(credentials)

                for index, window in enumerate(windows):
                    if signal.stopped:
                        break
                    is_last = index == total - 1
                    await self._run_batch(window, total, is_last, credentials, poller, merger, waiter)

                if signal.stopped:
                    logger.info("Historical sync ended by stop request")
                    return

                await self._complete(run_log_id, started)

            except CredentialError as e:
                logger.error(f"Historical sync failed: {e}")
                self.state.finish(f"Error: {e.message}")
                await self.store.finish_sync_log(run_log_id, SyncLogStatus.FAILED, error=str(e))
                await self.events.emit(SyncEvent.SYNC_FAILED, {"sync_type": RUN_SYNC_TYPE, "error": str(e)})

            finally:
                self._tokens.invalidate()
                if self._client is None:
                    await client.close()

    async def _complete(self, run_log_id: int, started: float) -> None:
        snap = self.state.snapshot()
        duration_min = (time.monotonic() - started) / 60
        self.state.finish(
            f"Done! {snap.orders_created} created, {snap.orders_updated} updated, "
            f"{snap.items_processed} items, {snap.rate_limit_resets} rate-limit waits "
            f"({duration_min:.1f} min)"
        )
        logger.info(
            f"Historical sync complete in {duration_min:.1f} minutes",
            extra={
                "orders_created": snap.orders_created,
                "orders_updated": snap.orders_updated,
                "items": snap.items_processed,
                "skipped": snap.skipped,
                "errors": snap.errors,
                "rate_limit_waits": snap.rate_limit_resets,
            },
        )
        await self.store.finish_sync_log(
            run_log_id,
            SyncLogStatus.SUCCESS,
            records_processed=snap.orders_processed,
            records_created=snap.orders_created,
            records_updated=snap.orders_updated,
        )
        await self.events.emit(SyncEvent.SYNC_COMPLETED, {
            "sync_type": RUN_SYNC_TYPE,
            "duration_ms": round(duration_min * 60 * 1000),
            "records_synced": snap.orders_processed,
            "items": snap.items_processed,
            "errors": snap.errors,
        })

    async def _run_batch(
        self,
        window: DateWindow,
        total: int,
        is_last: bool,
        credentials: SellerCredentials,
        poller: ReportPoller,
        merger: Merger,
        waiter: CancellableWait,
    ) -> None:
        n = window.batch_number
        prefix = f"Batch {n}/{total}"
        self.state.advance_batch(n)
        logger.info(f"{prefix}: {window.label}", extra={"batch": n, "days": window.days})

        log_id = await self.store.create_sync_log(batch_sync_type(n))

        try:
            content = await poller.fetch(
                lambda: self._tokens.ensure_token(credentials),
                window,
                total,
                credentials.marketplace_id,
            )
            if content is None:
                return

            self.state.set_phase(f"{prefix}: Processing...", SyncPhase.PROCESSING)
            report = parse_report(content)

            if report.is_empty:
                logger.info(f"{prefix}: no orders in this period")
                self.state.record_batch(BatchResult(batch_number=n, date_range_label=window.label))
                await self.store.finish_sync_log(log_id, SyncLogStatus.SUCCESS)
                await waiter.sleep(self.settings.empty_batch_delay_seconds)
                return

            counts = await merger.merge(report, prefix=prefix)
            result = BatchResult(
                batch_number=n,
                date_range_label=window.label,
                orders=counts.orders,
                orders_created=counts.orders_created,
                orders_updated=counts.orders_updated,
                items=counts.items,
            )
            self.state.record_batch(result)
            await self.store.finish_sync_log(
                log_id,
                SyncLogStatus.SUCCESS,
                records_processed=counts.orders,
                records_created=counts.orders_created,
                records_updated=counts.orders_updated,
            )
            await self.events.emit(SyncEvent.BATCH_COMPLETED, result.to_dict())

        except CredentialError as e:
            await self.store.finish_sync_log(log_id, SyncLogStatus.FAILED, error=str(e))
            raise

        except Exception as e:
            logger.error(f"{prefix} error: {e}", exc_info=not isinstance(e, SyncError), extra={"batch": n})
            self.state.record_batch(BatchResult(batch_number=n, date_range_label=window.label, error=str(e)))
            await self.store.finish_sync_log(log_id, SyncLogStatus.FAILED, error=str(e))
            await self.events.emit(SyncEvent.BATCH_FAILED, {"batch": n, "dateRange": window.label, "error": str(e)})

            if not is_last:
                await self._countdown(
                    waiter, f"{prefix}: Error. Retry in", self.settings.error_delay_seconds, SyncPhase.BATCH_ERROR
                )
            return

        if not is_last and not waiter.signal.stopped:
            await self._countdown(
                waiter, f"{prefix}: Done. Next batch in", self.settings.inter_batch_delay_seconds,
                SyncPhase.BETWEEN_BATCHES,
            )

    async def _countdown(self, waiter: CancellableWait, message: str, seconds: float, phase: SyncPhase) -> bool:
        """Cancellable wait showing ``"<message> N min..."`` as the phase."""
        per_minute = self.settings.seconds_per_minute
        self.state.set_phase(f"{message} {minutes_left(seconds, per_minute)} min...", phase)
        return await waiter.sleep(
            seconds,
            on_tick=lambda remaining: self.state.set_phase(f"{message} {minutes_left(remaining, per_minute)} min..."),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_sync_service: Optional[HistoricalSyncService] = None


async def get_sync_service() -> HistoricalSyncService:
    """Get singleton sync service instance."""
    global _sync_service
    if _sync_service is None:
        store = await get_store()
        _sync_service = HistoricalSyncService(store)
    return _sync_service


async def close_sync_service() -> None:
    global _sync_service
    if _sync_service is not None:
        await _sync_service.shutdown()
        _sync_service = None
