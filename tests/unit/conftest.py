"""
Shared fixtures for unit tests.
"""

from __future__ import annotations

import gzip
import io
import os
from datetime import datetime, timezone

import pytest

from cdn_log_etl.clients import ListResult
from cdn_log_etl.config import AppConfig
from cdn_log_etl.exceptions import S3ObjectNotFoundError


@pytest.fixture(scope="session", autouse=True)
def _env_vars():
    """
    Ensures a deterministic environment for every test run.
    """
    original = os.environ.copy()
    os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "cdn-log-etl-test")
    os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "CdnLogEtlTest")
    os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
    yield
    os.environ.clear()
    os.environ.update(original)


# ---------- Log line helpers ---------- #
def make_log_line(
    path: str = "/hls/video+9e70xehvtu637q6p/5/chunk_1031999.ts",
    ip: str = "104.28.131.0",
    date: str = "2021-11-17",
    time: str = "16:47:17",
    file_size: str = "72756",
    cs_bytes: str = "736",
    sc_bytes: str = "74134",
    status: str = "200",
) -> str:
    """Builds a 17-field tab separated CDN log line."""
    fields = [
        date,
        time,
        "GET",
        ip,
        "https",
        "https://cdn.livepeer.monster/",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7)",
        file_size,
        cs_bytes,
        sc_bytes,
        "151.139.34.203",
        "0.542",
        status,
        "msn=516&mTrack=1&dur=2000",
        path,
        "-",
        "-",
    ]
    return "\t".join(fields)


def gzip_lines(lines: list[str]) -> bytes:
    return gzip.compress(("\n".join(lines) + "\n").encode("utf-8"))


class FakeS3Client:
    """
    In-memory stand-in for `S3Client` with the same listing semantics:
    sorted keys, StartAfter exclusive, end_before exclusive, optional limit.
    """

    def __init__(self, objects: dict[str, bytes] | None = None):
        self.objects: dict[str, bytes] = dict(objects or {})
        self.list_calls: list[dict] = []
        self.fetched: list[str] = []

    def list_objects(
        self,
        bucket,
        prefix="",
        delimiter="",
        start_after=None,
        end_before=None,
        limit=None,
    ) -> ListResult:
        self.list_calls.append(
            {
                "prefix": prefix,
                "delimiter": delimiter,
                "start_after": start_after,
                "end_before": end_before,
                "limit": limit,
            }
        )
        result = ListResult()
        for key in sorted(self.objects):
            if not key.startswith(prefix):
                continue
            if start_after and key <= start_after:
                continue
            if end_before is not None and key >= end_before:
                break
            if delimiter:
                rest = key[len(prefix):]
                if delimiter in rest:
                    common = prefix + rest.split(delimiter, 1)[0] + delimiter
                    if common not in result.prefixes:
                        result.prefixes.append(common)
                    continue
            result.keys.append(key)
            if limit is not None and len(result.keys) >= limit:
                break
        return result

    def get_file_content_stream(self, bucket, key):
        self.fetched.append(key)
        if key not in self.objects:
            raise S3ObjectNotFoundError(bucket=bucket, key=key)
        return io.BytesIO(self.objects[key])


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def app_config() -> AppConfig:
    """An AppConfig with small, test-friendly values."""
    return AppConfig(
        log_bucket="cdn-logs",
        api_url="https://livepeer.example",
        api_key="secret",
        region_config_path="config.yaml",
        service_name="cdn-log-etl-test",
        staging=False,
        log_level="DEBUG",
        worker_pool_size=3,
        intake_queue_size=0,
        collapse_http_status=False,
        s3_object_timeout_seconds=30,
        s3_list_timeout_seconds=5,
        api_timeout_seconds=1.0,
    )


@pytest.fixture
def hour_16() -> datetime:
    return datetime(2021, 11, 17, 16, tzinfo=timezone.utc)
