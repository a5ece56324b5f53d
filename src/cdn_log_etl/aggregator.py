# src/cdn_log_etl/aggregator.py

"""
In-memory aggregation of classified log records for one processing window.

`AggregateStore` holds the counters and is not thread-safe on purpose: the
only thread allowed to mutate it is the `AggregationConsumer` that owns it.
Parser workers never touch the store; they hand records to the consumer's
intake queue, so every `apply` runs on the consumer thread.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import NamedTuple

from .classifier import ClassifiedRecord, NonEntityTraffic
from .exceptions import InvariantViolationError
from .schemas import EntityKind, ExportPayload, ExportRecord
from .window import ProcessingWindow

logger = logging.getLogger(__name__)


class AggregateKey(NamedTuple):
    date_hour: str
    entity_kind: EntityKind
    entity_id: str
    http_status_class: str


@dataclass
class AggregateBucket:
    unique_client_ips: set[str] = field(default_factory=set)
    count: int = 0
    total_file_size: int = 0
    total_bytes_from_origin: int = 0
    total_bytes_to_client: int = 0


class AggregateStore:
    """Multi-dimensional usage counters keyed by `AggregateKey`."""

    def __init__(self) -> None:
        self._buckets: dict[AggregateKey, AggregateBucket] = {}
        self.non_entity_bytes = 0
        self.records_applied = 0

    def __len__(self) -> int:
        return len(self._buckets)

    def get(self, key: AggregateKey) -> AggregateBucket | None:
        return self._buckets.get(key)

    def apply(self, record: ClassifiedRecord) -> None:
        key = AggregateKey(
            record.date_hour,
            record.entity_kind,
            record.entity_id,
            record.http_status_class,
        )
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = AggregateBucket()
        bucket.unique_client_ips.add(record.client_ip)
        bucket.count += 1
        bucket.total_file_size += record.file_size
        bucket.total_bytes_from_origin += record.bytes_from_origin
        bucket.total_bytes_to_client += record.bytes_to_client
        self.records_applied += 1

    def apply_non_entity(self, bytes_to_client: int) -> None:
        self.non_entity_bytes += bytes_to_client

    def items(self) -> list[tuple[AggregateKey, AggregateBucket]]:
        """Buckets in key order."""
        return sorted(self._buckets.items(), key=lambda kv: tuple(kv[0]))

    def flatten(self, window: ProcessingWindow, last_file: str) -> ExportPayload:
        """
        Builds the single export payload for `window`. Buckets that differ
        only by `date_hour` (late lines from the previous hour) are merged,
        so each (kind, id, status) triple appears once. Does not mutate the
        store, so calling it twice yields equal results.
        """
        merged: dict[tuple[EntityKind, str, str], AggregateBucket] = {}
        for key, bucket in self._buckets.items():
            if not isinstance(key.entity_kind, EntityKind):
                raise InvariantViolationError(
                    f"Unknown entity kind {key.entity_kind!r} in aggregate",
                    context={"entity_id": key.entity_id, "date_hour": key.date_hour},
                )
            triple = (key.entity_kind, key.entity_id, key.http_status_class)
            target = merged.get(triple)
            if target is None:
                target = merged[triple] = AggregateBucket()
            target.unique_client_ips |= bucket.unique_client_ips
            target.count += bucket.count
            target.total_file_size += bucket.total_file_size
            target.total_bytes_from_origin += bucket.total_bytes_from_origin
            target.total_bytes_to_client += bucket.total_bytes_to_client

        records = [
            ExportRecord(
                entity_id=entity_id,
                entity_kind=kind,
                unique_users=len(bucket.unique_client_ips),
                total_views=bucket.count,
                total_file_size=bucket.total_file_size,
                total_bytes_from_origin=bucket.total_bytes_from_origin,
                total_bytes_to_client=bucket.total_bytes_to_client,
                http_status_class=status,
            )
            for (kind, entity_id, status), bucket in merged.items()
        ]
        return ExportPayload(
            date=window.start_unix,
            region=window.region,
            file_name=last_file,
            data=records,
        )


_CLOSE = object()


class AggregationConsumer(threading.Thread):
    """
    Single writer for an `AggregateStore`. Parser workers `submit` items to the
    intake queue; `close` enqueues a sentinel after which the thread drains
    everything already queued and exits.
    """

    def __init__(self, store: AggregateStore | None = None, maxsize: int = 0):
        super().__init__(daemon=True, name="AggregationConsumer")
        self.store = store if store is not None else AggregateStore()
        self._intake: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = False
        self.error: BaseException | None = None

    def submit(self, item: ClassifiedRecord | NonEntityTraffic) -> None:
        if self._closed:
            raise InvariantViolationError("Record submitted after intake was closed")
        self._intake.put(item)

    def close(self) -> None:
        """Signals that no more items will be submitted."""
        self._closed = True
        self._intake.put(_CLOSE)

    def run(self) -> None:
        logger.debug("Aggregation consumer started")
        while True:
            item = self._intake.get()
            if item is _CLOSE:
                break
            if self.error is not None:
                # keep draining so producers blocked on a full queue can finish
                continue
            try:
                if isinstance(item, NonEntityTraffic):
                    self.store.apply_non_entity(item.bytes_to_client)
                else:
                    self.store.apply(item)
            except Exception as e:
                logger.exception("Aggregation failed")
                self.error = e
        logger.debug(
            "Aggregation consumer stopped",
            extra={
                "records": self.store.records_applied,
                "buckets": len(self.store),
                "non_entity_bytes": self.store.non_entity_bytes,
            },
        )

    def finish(self) -> AggregateStore:
        """
        Closes the intake, waits for the drain and returns the store. Raises
        whatever error stopped aggregation, if any.
        """
        self.close()
        self.join()
        if self.error is not None:
            raise InvariantViolationError(
                f"Aggregation stopped by an unexpected error: {self.error}"
            ) from self.error
        return self.store
