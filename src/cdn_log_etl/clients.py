# src/cdn_log_etl/clients.py

"""
Client wrappers for the S3 log bucket and the Livepeer API.

These classes provide a small, typed interface over boto3 and requests so that
the ETL logic never deals with raw responses, and every failure surfaces as
one of the exceptions in `exceptions.py`.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, BinaryIO, NoReturn, cast
from urllib.parse import quote, urlsplit, urlunsplit

import boto3
import pydantic
import requests
from botocore.client import Config as BotocoreConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .exceptions import (
    ApiResponseError,
    CheckpointForbiddenError,
    ExportError,
    S3AccessDeniedError,
    S3OperationError,
    S3ObjectNotFoundError,
    S3ThrottlingError,
    S3TimeoutError,
)
from .schemas import CheckpointResponse, ExportPayload

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client as S3ClientType

    from .config import AppConfig

logger = logging.getLogger(__name__)

_THROTTLING_CODES = ("Throttling", "ThrottlingException", "RequestLimitExceeded", "SlowDown")
_TIMEOUT_CODES = ("RequestTimeout", "RequestTimeoutException")


@dataclass
class ListResult:
    """Object keys and common prefixes ("directories") returned by a listing."""

    keys: list[str] = field(default_factory=list)
    prefixes: list[str] = field(default_factory=list)


def _raise_for_client_error(
    e: ClientError, bucket: str, key: str, operation: str
) -> NoReturn:
    """Maps a botocore ClientError to our specific exception types."""
    error_code = e.response["Error"]["Code"]
    error_message = e.response["Error"]["Message"]
    context = {"aws_error_code": error_code, "aws_error_message": error_message}

    if error_code in ("NoSuchKey", "NoSuchBucket"):
        raise S3ObjectNotFoundError(bucket=bucket, key=key, context=context) from e
    if error_code in ("AccessDenied", "403"):
        raise S3AccessDeniedError(bucket=bucket, key=key, context=context) from e
    if error_code in _THROTTLING_CODES:
        raise S3ThrottlingError(
            operation, context={"bucket": bucket, "key": key, **context}
        ) from e
    if error_code in _TIMEOUT_CODES:
        raise S3TimeoutError(
            operation, 0, context={"bucket": bucket, "key": key, **context}
        ) from e
    raise S3OperationError(operation, key, error_message, context=context) from e


class S3Client:
    """
    A wrapper for the S3 operations the ETL needs: prefix listings with an
    optional lexicographic range, and streaming object reads.

    Listing and fetching use separate boto3 clients so each gets its own read
    timeout. Both are thread-safe and shared by all parser workers.
    """

    def __init__(
        self,
        s3_client: "S3ClientType",
        listing_client: "S3ClientType | None" = None,
        object_timeout_seconds: float = 600,
    ):
        self._client = s3_client
        self._listing_client = listing_client or s3_client
        self._object_timeout_seconds = object_timeout_seconds

    def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        delimiter: str = "",
        start_after: str | None = None,
        end_before: str | None = None,
        limit: int | None = None,
    ) -> ListResult:
        """
        Lists keys (and common prefixes when `delimiter` is set) under `prefix`.

        S3 returns keys in lexicographic order, so `start_after` is passed to
        the service and `end_before` stops the iteration at the first key that
        sorts at or past it. `limit` caps the number of entries returned.
        """
        params: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        if delimiter:
            params["Delimiter"] = delimiter
        if start_after:
            params["StartAfter"] = start_after

        result = ListResult()
        paginator = self._listing_client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(**params):
                for common in page.get("CommonPrefixes", []):
                    if limit is not None and len(result.prefixes) + len(result.keys) >= limit:
                        return result
                    result.prefixes.append(common["Prefix"])
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    if end_before is not None and key >= end_before:
                        return result
                    if limit is not None and len(result.prefixes) + len(result.keys) >= limit:
                        return result
                    result.keys.append(key)
        except ClientError as e:
            _raise_for_client_error(e, bucket, prefix, "ListObjectsV2")
        except (ReadTimeoutError, ConnectTimeoutError) as e:
            raise S3TimeoutError(
                "ListObjectsV2",
                0,
                context={"bucket": bucket, "prefix": prefix, "timeout_error": str(e)},
            ) from e
        except EndpointConnectionError as e:
            raise S3OperationError("ListObjectsV2", prefix, str(e)) from e
        except BotoCoreError as e:
            # credentials, config and other client-side failures
            raise S3OperationError("ListObjectsV2", prefix, str(e)) from e
        return result

    def get_file_content_stream(self, bucket: str, key: str) -> BinaryIO:
        """
        Retrieves an S3 object's body as a file-like streaming object.
        Raises specific S3 exceptions based on the error type.
        """
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
            return cast(BinaryIO, response["Body"])
        except ClientError as e:
            _raise_for_client_error(e, bucket, key, "GetObject")
        except (ReadTimeoutError, ConnectTimeoutError) as e:
            raise S3TimeoutError(
                "GetObject",
                self._object_timeout_seconds,
                context={"bucket": bucket, "key": key, "timeout_error": str(e)},
            ) from e
        except EndpointConnectionError as e:
            raise S3TimeoutError(
                "GetObject",
                self._object_timeout_seconds,
                context={"bucket": bucket, "key": key, "connection_error": str(e)},
            ) from e
        except BotoCoreError as e:
            raise S3OperationError("GetObject", key, str(e)) from e


def create_s3_client(config: "AppConfig") -> S3Client:
    """Builds the S3Client with per-operation read timeouts from `config`."""
    object_client = boto3.client(
        "s3",
        config=BotocoreConfig(
            read_timeout=config.s3_object_timeout_seconds,
            retries={"max_attempts": 3, "mode": "standard"},
            max_pool_connections=max(10, config.worker_pool_size * 2),
        ),
    )
    listing_client = boto3.client(
        "s3",
        config=BotocoreConfig(
            read_timeout=config.s3_list_timeout_seconds,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
    )
    return S3Client(
        object_client,
        listing_client=listing_client,
        object_timeout_seconds=config.s3_object_timeout_seconds,
    )


class LivepeerApiClient:
    """
    Talks to the Livepeer API: reads a region's checkpoint and pushes hourly
    usage data.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout: float = 4.0,
        session: requests.Session | None = None,
    ):
        parts = urlsplit(api_url)
        self._base_url = urlunsplit((parts.scheme, parts.netloc, "", "", ""))
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def get_checkpoint(self, region: str) -> str | None:
        """
        Returns the name of the last object exported for `region`, or None when
        the API has no checkpoint yet (HTTP 204).

        Raises CheckpointForbiddenError on HTTP 403 and ApiResponseError on any
        other failure.
        """
        url = f"{self._base_url}/api/cdn-data/region/{quote(region, safe='')}"
        try:
            resp = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as e:
            raise ApiResponseError(url, None, str(e)) from e

        logger.debug(
            "Checkpoint response",
            extra={"region": region, "status_code": resp.status_code, "body": resp.text[:512]},
        )
        if resp.status_code == requests.codes.no_content:
            return None
        if resp.status_code == requests.codes.forbidden:
            raise CheckpointForbiddenError(region)
        if resp.status_code != requests.codes.ok:
            raise ApiResponseError(url, resp.status_code, resp.text)

        try:
            checkpoint = CheckpointResponse.model_validate_json(resp.content)
        except pydantic.ValidationError as e:
            raise ApiResponseError(url, resp.status_code, resp.text) from e
        return checkpoint.file_name or None

    def post_cdn_data(self, payload: ExportPayload) -> None:
        """Pushes one hour of aggregated data. Raises ExportError unless HTTP 200."""
        url = f"{self._base_url}/api/cdn-data"
        try:
            resp = self._session.post(
                url, json=payload.to_api_dict(), timeout=self._timeout
            )
        except requests.RequestException as e:
            raise ExportError(payload.region, payload.date, str(e)) from e

        if resp.status_code != requests.codes.ok:
            raise ExportError(
                payload.region,
                payload.date,
                f"unexpected status {resp.status_code}",
                context={"status_code": resp.status_code, "body": resp.text[:512]},
            )
        logger.debug(
            "Export accepted",
            extra={"region": payload.region, "date": payload.date, "body": resp.text[:512]},
        )
