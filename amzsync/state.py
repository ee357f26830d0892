"""
Single owner of the historical sync progress record.

Only the running job writes through these methods; status endpoints and
stream subscribers read copies. Progress writes are ignored once the run
is no longer active, so a job still winding down after a stop cannot leak
into the freshly reset record. Every access goes through one lock so
readers on other threads (e.g. the store's worker thread or a sync test
client) never see a half-written record.
"""
import threading
from datetime import datetime, timezone
from typing import Optional

from amzsync.models import BatchResult, SyncPhase, SyncState


class SyncStateStore:
    """Lock-guarded SyncState with single-writer mutation methods."""

    def __init__(self):
        self._lock = threading.Lock()
        self._state = SyncState()

    # ─── Reads ──────────────────────────────────────────────────────────────

    def snapshot(self) -> SyncState:
        with self._lock:
            return self._state.copy()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._state.is_running

    # ─── Lifecycle ──────────────────────────────────────────────────────────

    def reset(self) -> None:
        with self._lock:
            self._state = SyncState()

    def try_begin(self, total_batches: int, now: Optional[datetime] = None) -> bool:
        """
        Atomically claim the single run slot.

        Returns:
            False (state untouched) if a run is already active
        """
        with self._lock:
            if self._state.is_running:
                return False
            self._state = SyncState(
                is_running=True,
                total_batches=total_batches,
                start_time=now or datetime.now(timezone.utc),
                current_phase="Starting...",
            )
            return True

    def finish(self, message: str, phase: SyncPhase = SyncPhase.DONE) -> None:
        with self._lock:
            if not self._state.is_running:
                return
            self._state.is_running = False
            self._state.phase = phase
            self._state.current_phase = message

    # ─── Progress ───────────────────────────────────────────────────────────

    def set_phase(self, message: str, phase: Optional[SyncPhase] = None) -> None:
        with self._lock:
            if not self._state.is_running:
                return
            self._state.current_phase = message
            if phase is not None:
                self._state.phase = phase

    def advance_batch(self, batch_number: int) -> None:
        """Move to ``batch_number``; never goes backwards within a run."""
        with self._lock:
            if self._state.is_running and batch_number > self._state.current_batch:
                self._state.current_batch = batch_number

    def add_counts(
        self,
        orders_created: int = 0,
        orders_updated: int = 0,
        items: int = 0,
        skipped: int = 0,
        errors: int = 0,
    ) -> None:
        if min(orders_created, orders_updated, items, skipped, errors) < 0:
            raise ValueError("counters only grow during a run")
        with self._lock:
            if not self._state.is_running:
                return
            s = self._state
            s.orders_created += orders_created
            s.orders_updated += orders_updated
            s.orders_processed += orders_created + orders_updated
            s.items_processed += items
            s.skipped += skipped
            s.errors += errors

    def record_rate_limit(self) -> None:
        with self._lock:
            if self._state.is_running:
                self._state.rate_limit_resets += 1

    def record_batch(self, result: BatchResult) -> None:
        """Append a batch outcome; an errored batch also bumps ``errors``."""
        with self._lock:
            if not self._state.is_running:
                return
            self._state.batch_results.append(result)
            if result.error is not None:
                self._state.errors += 1
