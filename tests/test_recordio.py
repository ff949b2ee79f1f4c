import pytest

from sidecar_executor.mesos.recordio import RecordIODecoder
from sidecar_executor.mesos.recordio import RecordIOError

from tests.conftest import encode_record


def test_records_split_across_chunks() -> None:
    decoder = RecordIODecoder()

    assert decoder.feed(b"5\nhel") == []
    assert decoder.feed(b"lo3\nabc2") == [b"hello", b"abc"]
    assert decoder.feed(b"\nhi") == [b"hi"]


def test_decode_iterates_chunks() -> None:
    stream = [encode_record(b'{"type":"HEARTBEAT"}'), encode_record(b"")]

    assert list(RecordIODecoder().decode(stream)) == [b'{"type":"HEARTBEAT"}', b""]


def test_invalid_header_is_rejected() -> None:
    with pytest.raises(RecordIOError):
        RecordIODecoder().feed(b"abc\npayload")


def test_oversized_record_is_rejected() -> None:
    with pytest.raises(RecordIOError):
        RecordIODecoder(max_record_size=4).feed(b"10\n")


def test_runaway_header_is_rejected() -> None:
    with pytest.raises(RecordIOError):
        RecordIODecoder().feed(b"1" * 30)
