"""Backfill and incremental fetch cycles that feed the message channel."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from ..core.config import SyncSettings
from ..core.events import EventBus
from ..core.interfaces import MailSession
from ..core.models import FetchReport, MessageChunk
from ..ingestion.parser import MessageParser, ParseError
from ..transport.imap_client import FetchError, MessageTooLargeError, SearchError
from .state import SyncStateTracker

LOGGER = logging.getLogger(__name__)

ShouldContinue = Callable[[], bool]


def _always() -> bool:
    return True


def compute_start_uid(watermark: int | None, uidnext: int | None, window: int) -> int:
    """Return the first UID an incremental fetch should ask for.

    With a watermark the fetch resumes right after it. Without one the
    search starts ``window`` UIDs below ``uidnext``, clamped to 1.
    """
    if watermark is not None:
        return watermark + 1
    if uidnext is None:
        return 1
    return max(1, uidnext - window)


class FetchEngine:
    """Run fetch cycles for one session at a time and publish parsed messages."""

    def __init__(
        self,
        parser: MessageParser,
        tracker: SyncStateTracker,
        events: EventBus,
        settings: SyncSettings,
    ) -> None:
        self._parser = parser
        self._tracker = tracker
        self._events = events
        self._settings = settings

    # Public API --------------------------------------------------------------
    def backfill(
        self,
        account_id: str,
        session: MailSession,
        should_continue: ShouldContinue = _always,
    ) -> FetchReport:
        """Fetch every message currently in the folder.

        The watermark is left alone; call :meth:`initialize_watermark` with
        the returned report once live mode is about to start.
        """
        report = FetchReport()
        try:
            info = session.select_mailbox()
            report.uidnext = info.uidnext
            uids = session.search_all()
        except SearchError as exc:
            self._abort(account_id, report, f"Backfill search failed: {exc}")
            return report

        LOGGER.info(
            "Backfilling %s: %d message(s) in %s (UIDNEXT %s)",
            account_id,
            len(uids),
            info.name,
            info.uidnext,
        )
        self._consume(account_id, session, uids, report, should_continue)
        self._tracker.touch_sync(account_id)
        return report

    def initialize_watermark(self, account_id: str, report: FetchReport) -> int | None:
        """Seed the watermark from a backfill report.

        A complete backfill uses ``max(uidnext - 1, highest backfilled UID)``.
        An aborted one keeps only the contiguous prefix it got through so the
        remainder is fetched by the next incremental cycle. When the search
        itself failed nothing is known and the watermark stays unset.
        """
        if report.completed:
            candidates = [report.max_uid or 0]
            if report.uidnext is not None:
                candidates.append(report.uidnext - 1)
            value = max(0, *candidates)
        elif report.max_uid is not None:
            value = report.max_uid
        else:
            return self._tracker.watermark(account_id)
        watermark = self._tracker.initialize_watermark(account_id, value)
        LOGGER.info("Watermark for %s initialized at %s", account_id, watermark)
        return watermark

    def catch_up(
        self,
        account_id: str,
        session: MailSession,
        should_continue: ShouldContinue = _always,
    ) -> FetchReport:
        """Select the mailbox on a fresh session, then fetch above the watermark."""
        try:
            info = session.select_mailbox()
        except SearchError as exc:
            report = FetchReport()
            self._abort(account_id, report, f"Catch-up select failed: {exc}")
            return report
        LOGGER.info(
            "Catching up %s from watermark %s (UIDNEXT %s)",
            account_id,
            self._tracker.watermark(account_id),
            info.uidnext,
        )
        report = self.fetch_since(account_id, session, should_continue)
        report.uidnext = report.uidnext or info.uidnext
        return report

    def fetch_since(
        self,
        account_id: str,
        session: MailSession,
        should_continue: ShouldContinue = _always,
    ) -> FetchReport:
        """Fetch messages above the watermark and advance it on completion."""
        report = FetchReport()
        watermark = self._tracker.watermark(account_id)
        try:
            uidnext = None
            if watermark is None:
                info = session.select_mailbox()
                uidnext = report.uidnext = info.uidnext
            start = compute_start_uid(
                watermark, uidnext, self._settings.uidnext_fallback_window
            )
            uids = session.search_since(start)
        except SearchError as exc:
            self._abort(account_id, report, f"Incremental search failed: {exc}")
            return report

        if uids:
            LOGGER.debug(
                "Fetching %d new message(s) for %s from UID %s", len(uids), account_id, start
            )
            self._consume(account_id, session, uids, report, should_continue)
            if report.completed and report.max_uid is not None:
                self._tracker.advance_watermark(account_id, report.max_uid)
        self._tracker.touch_sync(account_id)
        return report

    # Internal helpers ---------------------------------------------------------
    def _consume(
        self,
        account_id: str,
        session: MailSession,
        uids: Sequence[int],
        report: FetchReport,
        should_continue: ShouldContinue,
    ) -> None:
        ordered = sorted(set(uids))
        report.requested = len(ordered)
        if not ordered:
            return
        limit = self._settings.max_message_bytes
        try:
            sizes = session.fetch_sizes(ordered)
        except FetchError as exc:
            self._abort(account_id, report, f"Size probe failed: {exc}")
            return

        for uid in ordered:
            if not should_continue():
                report.error = "Fetch cycle cancelled"
                LOGGER.info("Fetch cycle for %s cancelled before UID %s", account_id, uid)
                return
            size = sizes.get(uid)
            if size is not None and size > limit:
                LOGGER.warning(
                    "Skipping UID %s for %s: %d bytes exceeds limit %d",
                    uid,
                    account_id,
                    size,
                    limit,
                )
                report.skipped += 1
            else:
                try:
                    chunk = session.fetch_message(uid)
                except MessageTooLargeError as exc:
                    LOGGER.warning("Skipping oversized message for %s: %s", account_id, exc)
                    report.skipped += 1
                    chunk = None
                except FetchError as exc:
                    self._abort(account_id, report, f"Fetch of UID {uid} failed: {exc}")
                    return
                if chunk is not None:
                    report.fetched += 1
                    self._publish(account_id, chunk, report)
            report.max_uid = uid

    def _publish(self, account_id: str, chunk: MessageChunk, report: FetchReport) -> None:
        try:
            message = self._parser.parse(chunk.raw, account_id, self._settings.mailbox)
        except ParseError as exc:
            LOGGER.warning("Dropping UID %s for %s: %s", chunk.uid, account_id, exc)
            report.failed += 1
            self._tracker.record_parse_error(account_id, f"UID {chunk.uid}: {exc}")
            return
        self._events.message_received.publish(message)
        self._tracker.record_message(account_id)
        report.published += 1

    def _abort(self, account_id: str, report: FetchReport, error: str) -> None:
        LOGGER.error("%s (account %s)", error, account_id)
        report.error = error
        self._tracker.record_error(account_id, error)


__all__ = ["FetchEngine", "compute_start_uid"]
