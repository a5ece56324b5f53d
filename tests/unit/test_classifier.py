# tests/unit/test_classifier.py

import pytest

from cdn_log_etl.classifier import (
    ClassifiedRecord,
    NonEntityTraffic,
    classify_line,
    is_comment_line,
    is_empty_line,
    parse_request_path,
)
from cdn_log_etl.exceptions import InvalidRequestPathError
from cdn_log_etl.schemas import EntityKind

from conftest import make_log_line

# Three lines taken from a real CDN log.
RAW_LINES = [
    "2021-11-17\t16:47:16\tGET\t104.28.131.0\thttps\thttps://cdn.livepeer.monster/\tMozilla/5.0\t0\t736\t0\t151.139.34.203\t2.147\t499\tmsn=516&mTrack=1&dur=2000\t/hls/video+9e70xehvtu637q6p/5/chunk_1031999.ts\t-\t-",
    "2021-11-17\t16:47:17\tGET\t104.28.131.0\thttps\thttps://cdn.livepeer.monster/\tMozilla/5.0\t72756\t736\t74134\t151.139.34.203\t0.542\t200\tmsn=516&mTrack=1&dur=2000\t/hls/video+9e70xehvtu637q6p/5/chunk_1031999.ts\t-\t-",
    "2021-11-17\t16:47:17\tGET\t104.28.131.0\thttps\thttps://cdn.livepeer.monster/\tMozilla/5.0\t81780\t736\t83205\t151.139.34.195\t0.784\t200\tmsn=517&mTrack=1&dur=2000\t/hls/video+9e70xehvtu637q6p/5/chunk_1033999.ts\t-\t-",
]


# --- parse_request_path ---


class TestParseRequestPath:
    def test_hls_manifest_path(self):
        entity_id, kind = parse_request_path("/hls/fiolz5txbwy3smsr/0_1/index.m3u8")
        assert entity_id == "fiolz5txbwy3smsr"
        assert kind is EntityKind.MANIFEST_ID

    def test_video_prefix_is_stripped(self):
        entity_id, kind = parse_request_path("/hls/video+9e70xehvtu637q6p/5/chunk_1.ts")
        assert entity_id == "9e70xehvtu637q6p"
        assert kind is EntityKind.MANIFEST_ID

    def test_cmaf_is_a_manifest_id(self):
        entity_id, kind = parse_request_path("/cmaf/abc123/0_1/seg_5.m4s")
        assert entity_id == "abc123"
        assert kind is EntityKind.MANIFEST_ID

    def test_recordings_path_is_a_stream_id(self):
        entity_id, kind = parse_request_path(
            "/recordings/db90372d-655f-4118-8dcc-7e02b1557bed/source.mp4"
        )
        assert entity_id == "db90372d-655f-4118-8dcc-7e02b1557bed"
        assert kind is EntityKind.STREAM_ID

    def test_videorec_prefix_is_stripped(self):
        entity_id, _ = parse_request_path("/recordings/videorec+abcd/0/index.m3u8")
        assert entity_id == "abcd"

    @pytest.mark.parametrize(
        "path",
        [
            "/wp-admin/index.php",
            "/hls/index.m3u8",
            "/live/abc/0/index.m3u8",
            "/hls/abc/0/index.html",
            "/static/abc/0/chunk.ts",
            "",
        ],
    )
    def test_invalid_paths_raise(self, path):
        with pytest.raises(InvalidRequestPathError) as exc_info:
            parse_request_path(path)
        assert exc_info.value.error_code == "INVALID_REQUEST_PATH"
        assert exc_info.value.context["path"] == path


# --- classify_line ---


def test_classify_line_parses_real_lines():
    """Checks field extraction against lines captured from the CDN."""
    first = classify_line(RAW_LINES[0])
    assert isinstance(first, ClassifiedRecord)
    assert first.entity_id == "9e70xehvtu637q6p"
    assert first.entity_kind is EntityKind.MANIFEST_ID
    assert first.http_status_class == "499"
    assert first.bytes_to_client == 0
    assert first.date_hour == "2021-11-1716"

    second = classify_line(RAW_LINES[1])
    assert second == ClassifiedRecord(
        date_hour="2021-11-1716",
        entity_id="9e70xehvtu637q6p",
        entity_kind=EntityKind.MANIFEST_ID,
        client_ip="104.28.131.0",
        file_size=72756,
        bytes_from_origin=736,
        bytes_to_client=74134,
        http_status_class="200",
    )


def test_classify_line_collapses_status_when_requested():
    record = classify_line(RAW_LINES[0], collapse_http_status=True)
    assert record.http_status_class == "200"


@pytest.mark.parametrize("line", ["", "# Version: 1.0", "a\tb\tc"])
def test_classify_line_skips_blank_comment_and_short_lines(line):
    assert classify_line(line) is None


def test_unattributed_path_becomes_non_entity_traffic():
    line = make_log_line(path="/wp-admin/index.php", sc_bytes="1234")
    assert classify_line(line) == NonEntityTraffic(bytes_to_client=1234)


def test_unattributed_path_with_bad_bytes_is_dropped():
    line = make_log_line(path="/favicon.ico", sc_bytes="n/a")
    assert classify_line(line) is None


def test_missing_status_is_dropped():
    assert classify_line(make_log_line(status="-", sc_bytes="0")) is None


def test_malformed_integers_default_to_zero(caplog):
    line = make_log_line(file_size="abc", cs_bytes="", sc_bytes="42")
    record = classify_line(line)
    assert record.file_size == 0
    assert record.bytes_from_origin == 0
    assert record.bytes_to_client == 42
    assert any("Invalid integer" in r.message for r in caplog.records)


def test_recording_line():
    line = make_log_line(path="/recordings/stream-1/source.mp4", ip="10.0.0.1")
    record = classify_line(line)
    assert record.entity_kind is EntityKind.STREAM_ID
    assert record.entity_id == "stream-1"
    assert record.client_ip == "10.0.0.1"


def test_line_helpers():
    assert is_comment_line("# this is a comment")
    assert not is_comment_line("notacomment")
    assert is_empty_line("")
    assert not is_empty_line("_")
