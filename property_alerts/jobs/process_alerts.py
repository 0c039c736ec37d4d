from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from property_alerts.core.alerts import PriceDropDetector, PriceHistoryDropDetector
from property_alerts.core.autosave import AutoSaveRecorder
from property_alerts.core.bookkeeping import CursorUpdater, EventLogger
from property_alerts.core.mailer import DeliveryError, MailTransport, transport_from_env
from property_alerts.core.matching import AlertMatch, PropertyStore, match_alert
from property_alerts.core.models import Alert, AlertRunResult, RunMode, RunSummary
from property_alerts.core.notify import NotificationDispatcher, RecipientNotFound, build_digest
from property_alerts.core.settings import env_float, env_int
from property_alerts.core.supabase_repo import SupabaseRepo


LOGGER = logging.getLogger(__name__)

DEFAULT_WORKERS = 4
# Conventional shell status for SIGINT.
EXIT_INTERRUPTED = 130


class AlertLoadError(RuntimeError):
    """The list of alerts to process could not be loaded."""


class AlertRepo(PropertyStore, Protocol):
    def get_active_alerts(self, now: datetime) -> list[dict[str, Any]]: ...

    def get_user_email(self, user_id: str) -> str | None: ...

    def insert_saved_property(self, row: dict[str, Any]) -> bool: ...

    def insert_alert_event(self, row: dict[str, Any]) -> None: ...

    def update_alert_last_checked(self, alert_id: str, checked_at: datetime) -> None: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class AlertPipeline:
    store: PropertyStore
    dispatcher: NotificationDispatcher
    recorder: AutoSaveRecorder
    cursor: CursorUpdater
    events: EventLogger
    mode: RunMode = RunMode.LIVE
    price_drops: PriceDropDetector = field(default_factory=PriceHistoryDropDetector)
    verbose: bool = False
    clock: Callable[[], datetime] = _utc_now


def build_pipeline(
    repo: AlertRepo,
    transport: MailTransport | None,
    mode: RunMode = RunMode.LIVE,
    price_drops: PriceDropDetector | None = None,
    verbose: bool = False,
    clock: Callable[[], datetime] | None = None,
) -> AlertPipeline:
    return AlertPipeline(
        store=repo,
        dispatcher=NotificationDispatcher(users=repo, transport=transport, mode=mode),
        recorder=AutoSaveRecorder(repo),
        cursor=CursorUpdater(repo, mode=mode),
        events=EventLogger(repo, mode=mode),
        mode=mode,
        price_drops=price_drops or PriceHistoryDropDetector(),
        verbose=verbose,
        clock=clock or _utc_now,
    )


def process_alert(alert: Alert, pipeline: AlertPipeline) -> AlertRunResult:
    # Captured before querying so properties scraped mid-run stay eligible next time.
    checked_at = pipeline.clock()
    if not alert.is_eligible(checked_at):
        LOGGER.info("Skipping ineligible alert=%s status=%s expires_at=%s", alert.id, alert.status, alert.expires_at)
        return AlertRunResult(alert_id=alert.id, skipped=True)

    match = match_alert(alert, pipeline.store, pipeline.price_drops)
    if pipeline.verbose:
        _log_alert_diagnostics(alert, match)

    result = AlertRunResult(alert_id=alert.id, matched_count=len(match.properties))
    if match.properties:
        LOGGER.info("Found %s matching properties for alert=%s", len(match.properties), alert.id)
        try:
            receipt = pipeline.dispatcher.dispatch(alert, match.properties)
        except (RecipientNotFound, DeliveryError) as exc:
            LOGGER.error("Notification failed for alert=%s, cursor kept at %s: %s", alert.id, alert.last_checked, exc)
            result.dispatch_failed = True
            return result
        result.email_sent = True

        if receipt.simulated:
            LOGGER.info("DRY RUN: would auto-save %s properties for user=%s", len(match.properties), alert.user_id)
        else:
            result.saved_count = pipeline.recorder.record(alert, match.properties)
        pipeline.events.email_sent(alert, match.properties, receipt, pipeline.clock())
    else:
        LOGGER.info("No matching properties for alert=%s", alert.id)

    result.cursor_advanced = pipeline.cursor.advance(alert, checked_at)
    return result


def run_alerts(
    repo: AlertRepo,
    pipeline: AlertPipeline,
    workers: int = DEFAULT_WORKERS,
    max_runtime_seconds: float | None = None,
) -> RunSummary:
    summary = RunSummary(mode=pipeline.mode)
    try:
        rows = repo.get_active_alerts(pipeline.clock())
    except Exception as exc:  # noqa: BLE001
        raise AlertLoadError(f"Could not load active alerts: {exc}") from exc

    alerts: list[Alert] = []
    for row in rows:
        try:
            alerts.append(Alert.from_row(row))
        except (KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable alert row id=%s: %s", row.get("id"), exc)

    summary.total_alerts = len(alerts)
    if not alerts:
        LOGGER.info("No active alerts found")
        return summary

    LOGGER.info("Processing %s active alerts (mode=%s workers=%s)", len(alerts), pipeline.mode.value, workers)
    deadline = time.monotonic() + max_runtime_seconds if max_runtime_seconds else None

    def run_one(alert: Alert) -> AlertRunResult:
        if deadline is not None and time.monotonic() >= deadline:
            LOGGER.warning("Run-time budget exhausted; skipping alert=%s", alert.id)
            return AlertRunResult(alert_id=alert.id, skipped=True)
        LOGGER.info("Processing alert=%s for %s", alert.id, alert.location_name)
        try:
            return process_alert(alert, pipeline)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Error processing alert=%s: %s", alert.id, exc)
            return AlertRunResult(alert_id=alert.id, error=str(exc))

    with ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="alert") as executor:
        futures: list[Future[AlertRunResult]] = [executor.submit(run_one, alert) for alert in alerts]
        pending = set(futures)
        try:
            for future in as_completed(futures):
                pending.discard(future)
                summary.add(future.result())
        except KeyboardInterrupt:
            summary.interrupted = True
            cancelled = sum(1 for future in pending if future.cancel())
            summary.skipped_count += cancelled
            LOGGER.warning("Interrupted: cancelled %s queued alerts, waiting for in-flight alerts.", cancelled)

    if summary.interrupted:
        # The executor has drained; count alerts that were in flight at the interrupt.
        for future in pending:
            if not future.cancelled():
                summary.add(future.result())
    return summary


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Match new properties to location alerts and email subscribers.")
    parser.add_argument("--dry-run", action="store_true", help="Preview matches without sending or writing anything.")
    parser.add_argument("--verbose", action="store_true", help="Log per-alert diagnostic detail.")
    parser.add_argument(
        "--workers",
        type=int,
        default=env_int("ALERT_WORKERS", DEFAULT_WORKERS),
        help="Alerts processed concurrently (1 = sequential).",
    )
    parser.add_argument(
        "--max-runtime",
        type=float,
        default=env_float("ALERT_MAX_RUNTIME_SECONDS", 0.0),
        help="Stop starting new alerts after this many seconds (0 = no limit).",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    mode = RunMode.DRY_RUN if args.dry_run else RunMode.LIVE
    LOGGER.info("Starting alert processing (mode=%s)", mode.value)

    try:
        repo = SupabaseRepo()
    except ValueError as exc:
        LOGGER.error("%s", exc)
        return 1

    transport = transport_from_env()
    if mode is RunMode.LIVE and transport is None:
        LOGGER.error("No mail transport configured; set SMTP_HOST or MAIL_API_URL/MAIL_API_KEY and EMAIL_FROM.")
        return 1

    pipeline = build_pipeline(repo, transport, mode=mode, verbose=args.verbose)
    try:
        summary = run_alerts(repo, pipeline, workers=args.workers, max_runtime_seconds=args.max_runtime or None)
    except AlertLoadError as exc:
        LOGGER.error("Error fetching alerts: %s", exc)
        return 1

    LOGGER.info(
        "Processing %s: %s alerts processed, %s emails sent "
        "(failed=%s dispatch_failed=%s skipped=%s auto_saved=%s)",
        "interrupted" if summary.interrupted else "complete",
        summary.processed_count,
        summary.emails_sent_count,
        summary.failed_count,
        summary.dispatch_failed_count,
        summary.skipped_count,
        summary.saved_count,
    )
    return EXIT_INTERRUPTED if summary.interrupted else 0


def _log_alert_diagnostics(alert: Alert, match: AlertMatch) -> None:
    digest = build_digest(alert, match.properties)
    detail = {
        "alert": asdict(alert),
        "center": asdict(match.center) if match.center else None,
        "bounds": asdict(match.bounds) if match.bounds else None,
        "decode_error": match.decode_error,
        "category_counts": match.category_counts,
        "failed_categories": match.failed_categories,
        "matched_ids": [record.id for record in match.properties],
        "buckets": digest.bucket_counts(),
    }
    LOGGER.debug("Alert diagnostics alert=%s\n%s", alert.id, json.dumps(detail, indent=2, default=str))



if __name__ == "__main__":
    sys.exit(main())
