# src/cdn_log_etl/classifier.py

"""
Classification of raw CDN access-log lines.

A log line is a tab-separated record with at least 17 fields. Only a handful
of them matter for usage accounting:

    0  date              2021-11-17
    1  time              16:47:16
    3  client IP         104.28.131.0
    7  response size     72756
    8  cs-bytes          736     (bytes from origin)
    9  sc-bytes          74134   (bytes to client)
    12 HTTP status       200
    14 request path      /hls/video+9e70xehvtu637q6p/5/chunk_1031999.ts

A line either yields a `ClassifiedRecord` attributed to a playback or stream
ID, a `NonEntityTraffic` amount for requests that cannot be attributed, or
nothing at all.
"""

import logging
import posixpath
from dataclasses import dataclass

from .exceptions import InvalidRequestPathError
from .schemas import EntityKind

logger = logging.getLogger(__name__)

MIN_FIELDS = 17

_DATE, _TIME, _CLIENT_IP = 0, 1, 3
_FILE_SIZE, _CS_BYTES, _SC_BYTES = 7, 8, 9
_HTTP_STATUS, _REQUEST_PATH = 12, 14

ALLOWED_EXTENSIONS = frozenset({".m3u8", ".ts", ".mp4", ".m4s"})
ENTITY_KIND_BY_PREFIX = {
    "hls": EntityKind.MANIFEST_ID,
    "cmaf": EntityKind.MANIFEST_ID,
    "recordings": EntityKind.STREAM_ID,
}
ENTITY_ID_PREFIXES = ("video+", "videorec+")

# The CDN occasionally reports '-' instead of a status code; those lines
# always carry zero bytes.
MISSING_STATUS = "-"
COLLAPSED_STATUS = "200"


@dataclass(frozen=True, slots=True)
class ClassifiedRecord:
    date_hour: str
    entity_id: str
    entity_kind: EntityKind
    client_ip: str
    file_size: int
    bytes_from_origin: int
    bytes_to_client: int
    http_status_class: str


@dataclass(frozen=True, slots=True)
class NonEntityTraffic:
    bytes_to_client: int


def is_comment_line(line: str) -> bool:
    return line.startswith("#")


def is_empty_line(line: str) -> bool:
    return line == ""


def parse_request_path(path: str) -> tuple[str, EntityKind]:
    """
    Extracts the entity ID and kind from a request path such as
    ``/hls/<id>/0_1/index.m3u8`` or ``/recordings/<id>/source.mp4``.

    Raises InvalidRequestPathError when the path is not a playback URL.
    """
    toks = path.split("/")
    if len(toks) < 4:
        raise InvalidRequestPathError(path, "too few path segments")

    ext = posixpath.splitext(toks[-1])[1]
    if ext not in ALLOWED_EXTENSIONS:
        raise InvalidRequestPathError(path, f"unsupported extension '{ext}'")

    kind = ENTITY_KIND_BY_PREFIX.get(toks[1])
    if kind is None:
        raise InvalidRequestPathError(
            path, "first segment should be one of hls, cmaf or recordings"
        )

    entity_id = toks[2]
    for prefix in ENTITY_ID_PREFIXES:
        if entity_id.startswith(prefix):
            entity_id = entity_id[len(prefix):]
            break
    return entity_id, kind


def _parse_int(value: str, field_name: str) -> int:
    try:
        return int(value)
    except ValueError:
        logger.warning(
            "Invalid integer in log line, defaulting to 0",
            extra={"field": field_name, "value": value},
        )
        return 0


def classify_line(
    line: str, collapse_http_status: bool = False
) -> ClassifiedRecord | NonEntityTraffic | None:
    """
    Maps one raw log line to a `ClassifiedRecord`, `NonEntityTraffic` or
    None when the line should be skipped.
    """
    if is_empty_line(line) or is_comment_line(line):
        return None

    toks = line.split("\t")
    if len(toks) < MIN_FIELDS:
        logger.debug(
            "Line is not following the log standard",
            extra={"fields": len(toks), "line": line[:256]},
        )
        return None

    try:
        entity_id, kind = parse_request_path(toks[_REQUEST_PATH])
    except InvalidRequestPathError as e:
        logger.debug("Unattributed request", extra=e.context)
        try:
            return NonEntityTraffic(bytes_to_client=int(toks[_SC_BYTES]))
        except ValueError:
            return None

    status = toks[_HTTP_STATUS]
    if status == MISSING_STATUS:
        return None
    if collapse_http_status:
        status = COLLAPSED_STATUS

    date_hour = toks[_DATE] + toks[_TIME].split(":")[0]
    if not toks[_DATE] or not entity_id:
        logger.warning("Suspicious log line", extra={"line": line[:256]})

    return ClassifiedRecord(
        date_hour=date_hour,
        entity_id=entity_id,
        entity_kind=kind,
        client_ip=toks[_CLIENT_IP],
        file_size=_parse_int(toks[_FILE_SIZE], "file_size"),
        bytes_from_origin=_parse_int(toks[_CS_BYTES], "cs_bytes"),
        bytes_to_client=_parse_int(toks[_SC_BYTES], "sc_bytes"),
        http_status_class=status,
    )
