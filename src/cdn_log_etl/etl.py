# src/cdn_log_etl/etl.py

"""
The ETL driver.

For every configured source (a top-level prefix in the log bucket) the driver
resolves where processing has to start, then walks forward one hour at a
time until the next hour would end in the future:

    resolve -> [discover -> parse (parallel) -> aggregate -> export -> advance]*

Hours are processed strictly in sequence; only the files inside an hour are
parsed in parallel. Each hour gets a fresh `AggregateStore` that is dropped
after export.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Event
from typing import Any, Callable

from aws_lambda_powertools.metrics import MetricUnit

from .aggregator import AggregationConsumer
from .clients import LivepeerApiClient, S3Client
from .config import AppConfig, is_staging_region
from .exceptions import (
    EmptySourceError,
    EmptyWindowError,
    FileProcessingError,
    get_error_context,
)
from .exporter import Exporter
from .window import ProcessingWindow, WindowResolver, source_log_prefix
from .worker_pool import FileWorkerPool

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WindowResult:
    """Summary of one processed hour."""

    window: ProcessingWindow
    files: int = 0
    failed_files: list[FileProcessingError] = field(default_factory=list)
    records: int = 0
    non_entity_bytes: int = 0
    exported: bool = False


class EtlDriver:
    def __init__(
        self,
        config: AppConfig,
        region_names: dict[str, str],
        s3_client: S3Client,
        api_client: LivepeerApiClient,
        metrics: Any = None,
        clock: Callable[[], datetime] = _utc_now,
        cancel_event: Event | None = None,
    ):
        self._config = config
        self._bucket = config.log_bucket
        self._region_names = region_names
        self._s3 = s3_client
        self._resolver = WindowResolver(s3_client, api_client, config.log_bucket)
        self._exporter = Exporter(api_client)
        self._metrics = metrics
        self._clock = clock
        self._cancel = cancel_event or Event()

    def run(self) -> list[WindowResult]:
        """
        Processes every source whose region matches the staging setting.

        CheckpointForbiddenError and fatal S3/API errors propagate; they stop
        the whole run.
        """
        listing = self._s3.list_objects(self._bucket, delimiter="/")
        logger.debug("Got top dirs in bucket", extra={"prefixes": listing.prefixes})

        results: list[WindowResult] = []
        for prefix in listing.prefixes:
            if self._cancel.is_set():
                logger.warning("Run cancelled, skipping remaining sources")
                break
            source_id = prefix.rstrip("/")
            region = self._region_names.get(source_id)
            if region is None:
                continue
            if is_staging_region(region) != self._config.staging:
                continue
            logger.info(
                "Found region for source",
                extra={"source_id": source_id, "region": region},
            )
            results.extend(self.process_source(source_id, region))
        return results

    def process_source(self, source_id: str, region: str) -> list[WindowResult]:
        """Walks one source hour by hour up to the last complete hour."""
        try:
            window = self._resolver.first_window(source_id, region)
        except EmptySourceError as e:
            logger.warning("Source has no log objects yet", extra=get_error_context(e))
            return []

        results: list[WindowResult] = []
        while window.is_complete(self._clock()):
            if self._cancel.is_set():
                logger.warning("Run cancelled", extra={"region": region})
                break
            try:
                result = self.process_window(window)
            except EmptyWindowError as e:
                # upstream has not delivered this hour yet; the next run retries it
                logger.error("No log files found for window", extra=get_error_context(e))
                break
            if result is not None:
                results.append(result)
            window = window.next()
        return results

    def process_window(self, window: ProcessingWindow) -> WindowResult | None:
        """
        Discovers, parses, aggregates and exports one hour. Returns None when
        the run was cancelled part way, in which case nothing is exported.
        """
        started = time.monotonic()
        logger.info(
            "Start processing window",
            extra={
                "source_id": window.source_id,
                "region": window.region,
                "start_hour": window.start_hour.isoformat(),
                "resume_after": window.resume_after,
            },
        )
        start_after, end_before = window.scan_bounds()
        listing = self._s3.list_objects(
            self._bucket,
            prefix=source_log_prefix(window.source_id),
            start_after=start_after,
            end_before=end_before,
        )
        file_names = listing.keys
        if not file_names:
            if window.resume_after:
                # everything up to the end of this hour was already exported
                logger.info(
                    "Checkpointed window has no new files",
                    extra={"region": window.region, "resume_after": window.resume_after},
                )
                return WindowResult(window=window)
            raise EmptyWindowError(window.source_id, window.start_hour.isoformat())

        consumer = AggregationConsumer(maxsize=self._config.intake_queue_size)
        consumer.start()
        pool = FileWorkerPool(
            self._s3,
            self._bucket,
            consumer,
            cancel_event=self._cancel,
            collapse_http_status=self._config.collapse_http_status,
            object_timeout_seconds=self._config.s3_object_timeout_seconds,
        )
        try:
            errors = pool.run(file_names, self._config.worker_pool_size)
        finally:
            store = consumer.finish()

        if self._cancel.is_set():
            logger.warning(
                "Window interrupted, discarding partial aggregate",
                extra={"region": window.region, "start_hour": window.start_hour.isoformat()},
            )
            return None

        result = WindowResult(
            window=window,
            files=pool.files_processed,
            failed_files=errors,
            records=store.records_applied,
            non_entity_bytes=store.non_entity_bytes,
        )
        logger.info(
            "Extract and transform of window complete",
            extra={
                "bucket": self._bucket,
                "region": window.region,
                "start_hour": window.start_hour.isoformat(),
                "files": result.files,
                "failed_files": len(errors),
                "records": result.records,
                "other_traffic_bytes": result.non_entity_bytes,
                "took_seconds": round(time.monotonic() - started, 3),
            },
        )

        if len(store) > 0:
            payload = store.flatten(window, file_names[-1])
            result.exported = self._exporter.export(payload)
            if not result.exported:
                logger.error(
                    "Export failed, advancing anyway",
                    extra={"region": window.region, "start_hour": window.start_hour.isoformat()},
                )
        self._record_metrics(result)
        return result

    def _record_metrics(self, result: WindowResult) -> None:
        if self._metrics is None:
            return
        self._metrics.add_metric(name="FilesProcessed", unit=MetricUnit.Count, value=result.files)
        self._metrics.add_metric(
            name="FilesFailed", unit=MetricUnit.Count, value=len(result.failed_files)
        )
        self._metrics.add_metric(name="RecordsAggregated", unit=MetricUnit.Count, value=result.records)
        self._metrics.add_metric(
            name="NonEntityBytes", unit=MetricUnit.Bytes, value=result.non_entity_bytes
        )
        if result.records and not result.exported:
            self._metrics.add_metric(name="ExportFailures", unit=MetricUnit.Count, value=1)
