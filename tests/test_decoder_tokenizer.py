import base64

import pytest

from zatca_parser import (
    MAX_PAYLOAD_CHARS,
    ErrorKind,
    Invalid,
    TlvRecord,
    decode_base64,
    parse_qr,
    tokenize,
)


def test_decode_trims_surrounding_whitespace(acme_qr, acme_bytes):
    data, error = decode_base64(f"  \n{acme_qr}\r\n\t ")

    assert error is None
    assert data == acme_bytes


@pytest.mark.parametrize("text", [
    "not base64!",
    "QUJD*REVG",
    "QUI",          # missing padding
    "Q===",
    "QU-_",         # url-safe alphabet
    "QUJD\nREVG",   # embedded newline
    "قبض",
])
def test_decode_rejects_malformed_base64(text):
    data, error = decode_base64(text)

    assert data is None
    assert error.kind is ErrorKind.INVALID_BASE64


@pytest.mark.parametrize("text", ["", "   ", "\n\n"])
def test_decode_rejects_empty_input(text):
    _, error = decode_base64(text)

    assert error.kind is ErrorKind.INVALID_BASE64


@pytest.mark.parametrize("value", [None, b"QUJD", 42])
def test_decode_rejects_non_string_input(value):
    _, error = decode_base64(value)

    assert error.kind is ErrorKind.INVALID_BASE64


def test_decode_fails_fast_on_oversized_input():
    # Not valid base64 either; the size check must win.
    _, error = decode_base64("!" * (MAX_PAYLOAD_CHARS + 1))

    assert error.kind is ErrorKind.PAYLOAD_TOO_LARGE


def test_decode_accepts_payload_at_size_limit():
    data, error = decode_base64("A" * MAX_PAYLOAD_CHARS)

    assert error is None
    assert len(data) == MAX_PAYLOAD_CHARS * 3 // 4


def test_size_limit_applies_after_trimming(acme_qr):
    padded = " " * MAX_PAYLOAD_CHARS + acme_qr + " " * MAX_PAYLOAD_CHARS

    assert parse_qr(padded).is_valid


def test_tokenize_empty_buffer():
    records, error = tokenize(b"")

    assert records is None
    assert error.kind is ErrorKind.EMPTY_PAYLOAD


def test_tokenize_splits_records_in_source_order():
    data = b"\x01\x03abc\x07\x00\x02\x02xy\x01\x01z"

    records, error = tokenize(data)

    assert error is None
    assert records == (
        TlvRecord(1, b"abc"),
        TlvRecord(7, b""),
        TlvRecord(2, b"xy"),
        TlvRecord(1, b"z"),
    )
    assert sum(2 + len(r.value) for r in records) == len(data)


@pytest.mark.parametrize("data, offset", [
    (b"\x01", 0),
    (b"\x01\x05abc", 0),
    (b"\x01\x01a\x02", 3),
    (b"\x01\x01a\x02\x03bc", 3),
    (b"\x01\x00\x02\x00\x03\xff" + b"x" * 254, 4),
])
def test_tokenize_reports_truncation_offset(data, offset):
    records, error = tokenize(data)

    assert records is None
    assert error.kind is ErrorKind.TRUNCATED
    assert error.offset == offset
    assert "offset" in error.describe()


def test_tokenize_accepts_maximum_length_value():
    data = bytes([9, 255]) + b"\xab" * 255

    records, error = tokenize(data)

    assert error is None
    assert records == (TlvRecord(9, b"\xab" * 255),)


def test_tokenize_copies_values_out_of_mutable_buffers():
    buffer = bytearray(b"\x01\x02hi")

    records, _ = tokenize(buffer)
    buffer[2:4] = b"XX"

    assert records[0].value == b"hi"
    assert isinstance(records[0].value, bytes)


def test_truncated_payload_is_reported_through_parse_qr(acme_bytes):
    outcome = parse_qr(base64.b64encode(acme_bytes[:-1]).decode("ascii"))

    assert isinstance(outcome, Invalid)
    assert outcome.error.kind is ErrorKind.TRUNCATED
    assert str(outcome.error).startswith("Truncated:")
