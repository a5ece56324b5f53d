# src/cdn_log_etl/analyze.py

"""
Offline aggregation of log files already on disk.

`analyze_folder` runs every ``*.gz`` file below a folder through the same
worker pool and aggregation consumer as the ETL, then writes one CSV row per
aggregate bucket instead of posting to the API. Useful together with
`cdn-log-etl cat --download`.
"""

import csv
import logging
from pathlib import Path
from typing import BinaryIO

from .aggregator import AggregationConsumer, AggregateStore
from .exceptions import FileProcessingError
from .schemas import EntityKind
from .worker_pool import FileWorkerPool

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "date",
    "stream_id",
    "manifest_id",
    "stream_name",
    "unique_users",
    "total_views",
    "total_cs_bytes",
    "total_sc_bytes",
    "total_file_size",
    "http_code",
]


class LocalLogSource:
    """Serves local files through the `get_file_content_stream` call the pool uses."""

    def get_file_content_stream(self, bucket: str, key: str) -> BinaryIO:
        return open(key, "rb")


def find_log_files(folder: Path) -> list[str]:
    return sorted(str(p) for p in folder.rglob("*.gz") if p.is_file())


def write_csv(store: AggregateStore, output: Path) -> int:
    """Writes the store to `output` and returns the number of data rows."""
    rows = 0
    with open(output, "w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for key, bucket in store.items():
            writer.writerow(
                {
                    "date": key.date_hour,
                    "stream_id": key.entity_id if key.entity_kind is EntityKind.STREAM_ID else "",
                    "manifest_id": (
                        key.entity_id if key.entity_kind is EntityKind.MANIFEST_ID else ""
                    ),
                    "stream_name": "",
                    "unique_users": len(bucket.unique_client_ips),
                    "total_views": bucket.count,
                    "total_cs_bytes": bucket.total_bytes_from_origin,
                    "total_sc_bytes": bucket.total_bytes_to_client,
                    "total_file_size": bucket.total_file_size,
                    "http_code": key.http_status_class,
                }
            )
            rows += 1
    return rows


def analyze_folder(
    folder: Path,
    output: Path,
    pool_size: int = 10,
    collapse_http_status: bool = False,
) -> list[FileProcessingError]:
    """
    Aggregates every gzip log file under `folder` into the CSV at `output`.
    An empty folder still produces a file with just the header. Returns the
    per-file failures, which do not stop the other files.
    """
    files = find_log_files(folder)
    logger.info("Analyzing folder", extra={"folder": str(folder), "files": len(files)})

    consumer = AggregationConsumer()
    consumer.start()
    pool = FileWorkerPool(
        LocalLogSource(),
        str(folder),
        consumer,
        collapse_http_status=collapse_http_status,
    )
    try:
        errors = pool.run(files, pool_size)
    finally:
        store = consumer.finish()

    rows = write_csv(store, output)
    logger.info(
        "Analysis written",
        extra={
            "output": str(output),
            "rows": rows,
            "files_processed": pool.files_processed,
            "files_failed": len(errors),
        },
    )
    return errors
