# src/cdn_log_etl/window.py

"""
Hour windows and the resolution of where processing should start.

Log objects are laid out as::

    <source_id>/cds/<yyyy>/<mm>/<dd>/cds_<yyyyMMdd>-<HHmmss>-<suffix>.log.gz

so object names sort in time order and the name built from an hour boundary
(`object_name_for_time`) bounds an exact lexicographic range scan.
"""

import logging
import posixpath
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from .clients import LivepeerApiClient, S3Client
from .exceptions import EmptySourceError, InvalidObjectNameError

logger = logging.getLogger(__name__)

AGGREGATION_PERIOD = timedelta(hours=1)

_OBJECT_PREFIX = "cds_"
_OBJECT_TIME_FORMAT = "%Y%m%d%H%M%S"


def truncate_to_hour(moment: datetime) -> datetime:
    return moment.replace(minute=0, second=0, microsecond=0)


def source_log_prefix(source_id: str) -> str:
    return f"{source_id}/cds/"


def object_name_for_time(source_id: str, moment: datetime) -> str:
    """Builds the (virtual) object name that sorts exactly at `moment`."""
    return f"{source_log_prefix(source_id)}{moment:%Y/%m/%d}/cds_{moment:%Y%m%d-%H%M%S}"


def parse_object_timestamp(object_name: str) -> datetime:
    """
    Parses the UTC timestamp embedded in a log object name.

    Raises InvalidObjectNameError when the name does not follow the
    ``cds_<yyyyMMdd>-<HHmmss>`` convention.
    """
    file_name = posixpath.basename(object_name)
    if file_name.startswith(_OBJECT_PREFIX):
        file_name = file_name[len(_OBJECT_PREFIX):]
    parts = file_name.split("-")
    if len(parts) < 2:
        raise InvalidObjectNameError(object_name)
    try:
        parsed = datetime.strptime(parts[0] + parts[1][:6], _OBJECT_TIME_FORMAT)
    except ValueError as e:
        raise InvalidObjectNameError(object_name) from e
    return parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class ProcessingWindow:
    """One hour of logs for one source."""

    source_id: str
    region: str
    start_hour: datetime
    resume_after: str | None = None

    @property
    def end_hour(self) -> datetime:
        return self.start_hour + AGGREGATION_PERIOD

    @property
    def start_unix(self) -> int:
        return int(self.start_hour.timestamp())

    def is_complete(self, now: datetime) -> bool:
        """True once the whole hour lies in the past."""
        return self.end_hour <= now

    def next(self) -> "ProcessingWindow":
        return replace(self, start_hour=self.end_hour, resume_after=None)

    def scan_bounds(self) -> tuple[str, str]:
        """
        Returns (start_after, end_before) object names for the range scan.
        Resumed windows start right after the checkpointed object.
        """
        end_before = object_name_for_time(self.source_id, self.end_hour)
        if self.resume_after:
            return self.resume_after, end_before
        return object_name_for_time(self.source_id, self.start_hour), end_before


class WindowResolver:
    """Works out the first hour that still has to be processed for a source."""

    def __init__(self, s3_client: S3Client, api_client: LivepeerApiClient, bucket: str):
        self._s3 = s3_client
        self._api = api_client
        self._bucket = bucket

    def resolve(self, source_id: str, region: str) -> tuple[datetime, str | None]:
        """
        Returns the start hour and, when resuming from a checkpoint, the name of
        the last object that was already processed.

        CheckpointForbiddenError from the API propagates unchanged. A source
        without any objects raises EmptySourceError.
        """
        checkpoint = self._api.get_checkpoint(region)
        if checkpoint:
            started = parse_object_timestamp(checkpoint)
            logger.info(
                "Resuming from checkpoint",
                extra={"region": region, "object": checkpoint, "time": started.isoformat()},
            )
            return truncate_to_hour(started), checkpoint

        first = self._s3.list_objects(
            self._bucket, prefix=source_log_prefix(source_id), limit=1
        )
        if not first.keys:
            raise EmptySourceError(source_id)

        started = parse_object_timestamp(first.keys[0])
        logger.info(
            "No checkpoint, starting from the earliest object",
            extra={"region": region, "object": first.keys[0], "time": started.isoformat()},
        )
        return truncate_to_hour(started), None

    def first_window(self, source_id: str, region: str) -> ProcessingWindow:
        start_hour, resume_after = self.resolve(source_id, region)
        return ProcessingWindow(
            source_id=source_id,
            region=region,
            start_hour=start_hour,
            resume_after=resume_after,
        )
