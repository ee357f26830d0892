"""
Report lifecycle for one batch: create -> poll until DONE -> download.

Every wait (429 backoff, poll interval) goes through CancellableWait, so a
stop request ends the batch at the next tick. Stopping is not an error:
the poller returns None and the caller winds the run down.
"""
import math
from typing import Awaitable, Callable, Optional

from amzsync.config import SyncConfig, config
from amzsync.events import EventBus, SyncEvent, events as default_events
from amzsync.exceptions import RateLimitedError, RateLimitExhaustedError, ReportFailureError, ReportTimeoutError
from amzsync.models import SyncPhase
from amzsync.observability import get_logger
from amzsync.planner import DateWindow
from amzsync.reports import STATUS_DONE, TERMINAL_FAILURES, ReportClient
from amzsync.resilience import BackoffPolicy, CancellableWait, minutes_left
from amzsync.state import SyncStateStore

logger = get_logger(__name__)

TokenSource = Callable[[], Awaitable[str]]


class ReportPoller:
    """
    Drives one report from request to downloaded text.

    Usage:
        poller = ReportPoller(client, state, waiter)
        content = await poller.fetch(get_token, window, total_batches, marketplace_id)
        if content is None:
            ...  # stopped
    """

    def __init__(
        self,
        client: ReportClient,
        state: SyncStateStore,
        waiter: CancellableWait,
        backoff: BackoffPolicy = None,
        sync_config: SyncConfig = None,
        events: EventBus = None,
    ):
        self.client = client
        self.state = state
        self.waiter = waiter
        self.settings = sync_config or config.sync
        self.backoff = backoff or BackoffPolicy(
            step_minutes=self.settings.backoff_step_minutes,
            cap_minutes=self.settings.backoff_cap_minutes,
            max_attempts=self.settings.max_create_attempts,
            seconds_per_minute=self.settings.seconds_per_minute,
        )
        self.events = events or default_events

    @property
    def stopped(self) -> bool:
        return self.waiter.signal.stopped

    async def fetch(
        self,
        get_token: TokenSource,
        window: DateWindow,
        total_batches: int,
        marketplace_id: str,
    ) -> Optional[str]:
        """
        Run the full lifecycle for ``window``.

        Returns:
            Report text, or None if the run was stopped

        Raises:
            RateLimitExhaustedError, ReportFailureError, ReportTimeoutError,
            SPAPIError, SPAPIConnectionError, CredentialError
        """
        prefix = f"Batch {window.batch_number}/{total_batches}"

        report_id = await self.create_report(get_token, window, marketplace_id, prefix)
        if report_id is None:
            return None

        document_id = await self.wait_for_report(get_token, report_id, prefix)
        if document_id is None:
            return None

        self.state.set_phase(f"{prefix}: Downloading...", SyncPhase.DOWNLOADING)
        content = await self.client.fetch_document(await get_token(), document_id)
        logger.info(
            f"{prefix}: downloaded {len(content) / 1024:.0f} KB",
            extra={"report_id": report_id, "document_id": document_id},
        )
        return content

    async def create_report(
        self,
        get_token: TokenSource,
        window: DateWindow,
        marketplace_id: str,
        prefix: str,
    ) -> Optional[str]:
        """Request the report, backing off on 429 up to the attempt budget."""
        self.state.set_phase(f"{prefix}: Creating report...", SyncPhase.CREATING_REPORT)

        attempt = 0
        while not self.stopped:
            attempt += 1
            try:
                report_id = await self.client.create_report(
                    await get_token(), window.start, window.end, [marketplace_id]
                )
            except RateLimitedError as e:
                self.state.record_rate_limit()
                wait_minutes = self.backoff.wait_minutes(attempt)
                logger.warning(
                    f"{prefix}: rate limited (429), waiting {wait_minutes:g} min",
                    extra={"attempt": attempt, "wait_minutes": wait_minutes, "retry_after": e.retry_after},
                )
                await self.events.emit(SyncEvent.RATE_LIMITED, {
                    "batch": window.batch_number,
                    "attempt": attempt,
                    "wait_minutes": wait_minutes,
                })
                if self.backoff.exhausted(attempt):
                    raise RateLimitExhaustedError(attempt)

                completed = await self.waiter.sleep(
                    self.backoff.wait_seconds(attempt),
                    on_tick=lambda remaining: self.state.set_phase(
                        f"{prefix}: Rate limited, resuming in "
                        f"{minutes_left(remaining, self.backoff.seconds_per_minute)} min..."
                    ),
                )
                if not completed:
                    return None
                continue

            logger.info(f"{prefix}: report requested", extra={"report_id": report_id, "attempt": attempt})
            return report_id

        return None

    async def wait_for_report(self, get_token: TokenSource, report_id: str, prefix: str) -> Optional[str]:
        """
        Poll until DONE and return the document id.

        A 429 on a status check waits a fixed interval instead of the poll
        interval. It still uses up a check, so a provider that answers 429
        forever ends in ReportTimeoutError. The create-attempt budget is
        not touched.
        """
        self.state.set_phase(f"{prefix}: Waiting for Amazon...", SyncPhase.WAITING_FOR_REPORT)

        interval = self.settings.poll_interval_seconds
        max_checks = max(1, int(self.settings.max_report_wait_seconds // interval))
        check = 1

        while check <= max_checks:
            if self.stopped:
                return None

            try:
                report = await self.client.get_report(await get_token(), report_id)
            except RateLimitedError as e:
                wait = self.settings.status_rate_limit_wait_seconds
                logger.warning(
                    f"{prefix}: rate limited on status check {check}, waiting {wait:g}s",
                    extra={"report_id": report_id, "retry_after": e.retry_after},
                )
                if not await self.waiter.sleep(wait):
                    return None
                check += 1
                continue

            status = report.get("processingStatus")
            if check == 1 or check % 4 == 0:
                logger.info(f"{prefix}: status {status} (check {check})", extra={"report_id": report_id})

            elapsed_minutes = math.ceil(check * interval / self.settings.seconds_per_minute)
            self.state.set_phase(f"{prefix}: {status or 'Checking'}... ({elapsed_minutes} min)")

            if status == STATUS_DONE:
                document_id = report.get("reportDocumentId")
                if not document_id:
                    raise ReportFailureError("Report DONE without a document", report_id=report_id)
                return document_id

            if status in TERMINAL_FAILURES:
                raise ReportFailureError(f"Report {status}", report_id=report_id)

            if not await self.waiter.sleep(interval):
                return None
            check += 1

        raise ReportTimeoutError(report_id, max_checks * interval)
