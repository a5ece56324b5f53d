# src/cdn_log_etl/worker_pool.py

"""
Parallel fetch and parse of gzip-compressed log objects.

A fixed number of worker threads pull object names from a shared job queue,
stream each object from S3 through a gzip decoder and classify it line by
line. Classified output goes to the `AggregationConsumer` intake; workers
never touch aggregate state themselves.

Every object gets a deadline of `object_timeout_seconds` from the moment
its fetch starts. A watchdog thread closes the body of any object that runs
past its deadline, and of every in-flight object once the run is cancelled,
so a stalled read cannot hold up the pool.
"""

import gzip
import logging
import queue
import threading
import time
import zlib
from concurrent.futures import ThreadPoolExecutor, wait
from contextlib import closing
from threading import Event
from typing import BinaryIO

from .aggregator import AggregationConsumer
from .classifier import classify_line
from .clients import S3Client
from .exceptions import (
    CdnLogEtlError,
    FileProcessingError,
    S3TimeoutError,
    is_retryable_error,
)

logger = logging.getLogger(__name__)

DEFAULT_OBJECT_TIMEOUT_SECONDS = 600
WATCHDOG_INTERVAL_SECONDS = 1.0


class FileWorkerPool:
    """Runs one window's worth of log objects through the line classifier."""

    def __init__(
        self,
        s3_client: S3Client,
        bucket: str,
        consumer: AggregationConsumer,
        cancel_event: Event | None = None,
        collapse_http_status: bool = False,
        object_timeout_seconds: float = DEFAULT_OBJECT_TIMEOUT_SECONDS,
        watchdog_interval: float = WATCHDOG_INTERVAL_SECONDS,
    ):
        self._s3 = s3_client
        self._bucket = bucket
        self._consumer = consumer
        self._cancel = cancel_event or Event()
        self._collapse_http_status = collapse_http_status
        self._object_timeout = object_timeout_seconds
        self._watchdog_interval = watchdog_interval
        # key -> (deadline, body) for every object currently being read
        self._in_flight: dict[str, tuple[float, BinaryIO]] = {}
        self._expired: set[str] = set()
        self._lock = threading.Lock()
        self.files_processed = 0

    def run(self, object_names: list[str], pool_size: int) -> list[FileProcessingError]:
        """
        Processes every object in `object_names` with `pool_size` workers and
        returns once all of them have finished. Per-file failures are logged
        and returned; they never stop the other files.
        """
        jobs: queue.Queue[str] = queue.Queue()
        for name in object_names:
            jobs.put(name)

        stop_watchdog = Event()
        watchdog = threading.Thread(
            target=self._watch, args=(stop_watchdog,), name="log-parser-watchdog", daemon=True
        )
        watchdog.start()

        worker_count = max(1, min(pool_size, len(object_names)))
        try:
            with ThreadPoolExecutor(
                max_workers=worker_count, thread_name_prefix="log-parser"
            ) as executor:
                futures = [executor.submit(self._worker, jobs) for _ in range(worker_count)]
                wait(futures)
        finally:
            stop_watchdog.set()
            watchdog.join()

        errors: list[FileProcessingError] = []
        processed = 0
        for future in futures:
            done, failed = future.result()
            processed += done
            errors.extend(failed)
        self.files_processed = processed
        return errors

    def _watch(self, stop: Event) -> None:
        """Closes bodies that ran past their deadline, or all of them on cancel."""
        while not stop.wait(self._watchdog_interval):
            cancelled = self._cancel.is_set()
            now = time.monotonic()
            with self._lock:
                overdue = [
                    (key, body)
                    for key, (deadline, body) in self._in_flight.items()
                    if cancelled or now >= deadline
                ]
                for key, _ in overdue:
                    if not cancelled:
                        self._expired.add(key)
                    del self._in_flight[key]
            for key, body in overdue:
                logger.warning(
                    "Aborting object read",
                    extra={"key": key, "reason": "cancelled" if cancelled else "timeout"},
                )
                body.close()

    def _worker(self, jobs: "queue.Queue[str]") -> tuple[int, list[FileProcessingError]]:
        processed = 0
        errors: list[FileProcessingError] = []
        while not self._cancel.is_set():
            try:
                key = jobs.get_nowait()
            except queue.Empty:
                break
            try:
                completed = self.parse_file(key)
                if completed is not None:
                    processed += 1
            except CdnLogEtlError as e:
                errors.append(self._file_failed(key, e.message, e))
            except (OSError, EOFError, zlib.error) as e:
                # gzip.BadGzipFile is an OSError
                errors.append(self._file_failed(key, str(e), e))
            except Exception as e:
                logger.exception("Unexpected error parsing file", extra={"key": key})
                errors.append(self._file_failed(key, f"unexpected: {e}", e))
        return processed, errors

    def _file_failed(
        self, key: str, reason: str, cause: BaseException
    ) -> FileProcessingError:
        error = FileProcessingError(
            key,
            reason,
            context={
                "cause": type(cause).__name__,
                "retryable": is_retryable_error(cause),
            },
        )
        error.__cause__ = cause
        logger.error("Error processing file", extra=error.to_dict())
        return error

    def _timed_out(self, key: str) -> S3TimeoutError:
        return S3TimeoutError(
            "GetObject",
            self._object_timeout,
            context={"bucket": self._bucket, "key": key},
        )

    def parse_file(self, key: str) -> int | None:
        """
        Streams one object through gunzip and the classifier. Returns the line
        count, or None when the run was cancelled part way through the object.

        Raises S3TimeoutError once the object's deadline has passed.
        """
        started = time.monotonic()
        deadline = started + self._object_timeout
        lines = 0
        stream = self._s3.get_file_content_stream(self._bucket, key)
        with self._lock:
            self._in_flight[key] = (deadline, stream)
        try:
            with closing(stream), gzip.GzipFile(fileobj=stream, mode="rb") as contents:
                for raw in contents:
                    if self._cancel.is_set():
                        logger.info("Cancelled while parsing file", extra={"key": key})
                        return None
                    if time.monotonic() >= deadline:
                        raise self._timed_out(key)
                    line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                    result = classify_line(line, self._collapse_http_status)
                    if result is not None:
                        self._consumer.submit(result)
                    lines += 1
        except (OSError, EOFError, ValueError, zlib.error) as e:
            # a body closed by the watchdog fails whichever way the reader notices
            with self._lock:
                expired = key in self._expired
            if expired:
                raise self._timed_out(key) from e
            if self._cancel.is_set():
                logger.info("Cancelled while fetching file", extra={"key": key})
                return None
            raise
        finally:
            with self._lock:
                self._in_flight.pop(key, None)
                self._expired.discard(key)

        logger.debug(
            "End parsing file",
            extra={
                "bucket": self._bucket,
                "key": key,
                "lines": lines,
                "took_seconds": round(time.monotonic() - started, 3),
            },
        )
        return lines
