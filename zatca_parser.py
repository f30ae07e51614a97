# Purpose: Decode and validate the TLV payload of a ZATCA e-invoice QR code.
# Every stage returns its failures as data; nothing here raises on bad input.

import argparse
import base64
import binascii
import os
import re
import sys
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

# --- CONFIGURATION ---
QR_TEXT_FILE = "qrcode.txt"
MAX_PAYLOAD_CHARS = 4096
# Two amounts of at most 255 characters never need more digits than this.
AMOUNT_PRECISION = 512

VAT_NUMBER_PATTERN = re.compile(r"[0-9]{15}")
AMOUNT_PATTERN = re.compile(r"[0-9]+(?:\.[0-9]+)?")


class ErrorKind(Enum):
    INVALID_BASE64 = "InvalidBase64"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    EMPTY_PAYLOAD = "EmptyPayload"
    TRUNCATED = "Truncated"
    MISSING_TAG = "MissingTag"
    INVALID_UTF8 = "InvalidUtf8"
    NOT_A_NUMBER = "NotANumber"


class WarningKind(Enum):
    SUSPICIOUS_VAT_NUMBER = "SuspiciousVatNumber"
    INCONSISTENT_AMOUNTS = "InconsistentAmounts"


# ZATCA Tag Definitions. Tags 1-5 are mandatory, 6-9 carry the phase 2 stamp.
TAG_INFO = {
    1: {"desc": "Seller Name", "field": "seller_name", "kind": "text", "non_empty": True},
    2: {"desc": "VAT Registration Number", "field": "vat_number", "kind": "text"},
    3: {"desc": "Invoice Timestamp", "field": "timestamp", "kind": "text"},
    4: {"desc": "Invoice Total (with VAT)", "field": "invoice_total", "kind": "amount"},
    5: {"desc": "VAT Total", "field": "vat_total", "kind": "amount"},
    6: {"desc": "Invoice Hash"},
    7: {"desc": "ECDSA Signature"},
    8: {"desc": "ECDSA Public Key"},
    9: {"desc": "Certificate Signature"},
}

MANDATORY_TAGS = (1, 2, 3, 4, 5)


@dataclass(frozen=True)
class ParseError:
    """A classified, terminal failure for one decode attempt."""

    kind: ErrorKind
    offset: Optional[int] = None
    tag: Optional[int] = None
    raw: Optional[str] = None

    def describe(self):
        if self.kind is ErrorKind.INVALID_BASE64:
            return "Payload is not valid base64 text"
        if self.kind is ErrorKind.PAYLOAD_TOO_LARGE:
            return f"Payload exceeds {MAX_PAYLOAD_CHARS} characters"
        if self.kind is ErrorKind.EMPTY_PAYLOAD:
            return "Payload decodes to an empty buffer"
        if self.kind is ErrorKind.TRUNCATED:
            return f"TLV record at offset {self.offset} runs past the end of the buffer"
        if self.kind is ErrorKind.MISSING_TAG:
            return f"Mandatory tag {self.tag} ({TAG_INFO[self.tag]['desc']}) is missing"
        if self.kind is ErrorKind.INVALID_UTF8:
            return f"Tag {self.tag} ({TAG_INFO[self.tag]['desc']}) is not valid UTF-8"
        return f"Tag {self.tag} ({TAG_INFO[self.tag]['desc']}) is not a non-negative decimal: {self.raw!r}"

    def __str__(self):
        return f"{self.kind.value}: {self.describe()}"


@dataclass(frozen=True)
class FieldWarning:
    """An anomaly on a field of an otherwise valid invoice."""

    kind: WarningKind
    tag: int
    detail: str

    def __str__(self):
        return f"{self.kind.value} (tag {self.tag}): {self.detail}"


@dataclass(frozen=True)
class TlvRecord:
    tag: int
    value: bytes


@dataclass(frozen=True)
class ParsedInvoice:
    seller_name: str
    vat_number: str
    timestamp: str
    invoice_total: Decimal
    vat_total: Decimal
    subtotal: Decimal
    extended_tags: Mapping[int, bytes] = field(default_factory=lambda: MappingProxyType({}))
    warnings: Tuple[FieldWarning, ...] = ()


@dataclass(frozen=True)
class Valid:
    invoice: ParsedInvoice
    is_valid = True


@dataclass(frozen=True)
class Invalid:
    error: ParseError
    is_valid = False


def decode_base64(text):
    """Trims and decodes the captured QR text. Returns (bytes, None) or (None, ParseError)."""
    if not isinstance(text, str):
        return None, ParseError(ErrorKind.INVALID_BASE64)

    trimmed = text.strip()
    # Size is checked before any decoding work is done.
    if len(trimmed) > MAX_PAYLOAD_CHARS:
        return None, ParseError(ErrorKind.PAYLOAD_TOO_LARGE)

    try:
        data = base64.b64decode(trimmed, validate=True)
    except (binascii.Error, ValueError):
        return None, ParseError(ErrorKind.INVALID_BASE64)

    if not data:
        return None, ParseError(ErrorKind.INVALID_BASE64)
    return data, None


def tokenize(data):
    """Walks the buffer into TLV records. Returns (records, None) or (None, ParseError)."""
    if not data:
        return None, ParseError(ErrorKind.EMPTY_PAYLOAD)

    records = []
    size = len(data)
    i = 0
    while i < size:
        if size - i < 2:
            return None, ParseError(ErrorKind.TRUNCATED, offset=i)
        tag = data[i]
        length = data[i + 1]
        if size - i - 2 < length:
            return None, ParseError(ErrorKind.TRUNCATED, offset=i)

        records.append(TlvRecord(tag, bytes(data[i + 2:i + 2 + length])))
        i += 2 + length

    if i != size:
        raise AssertionError(f"tokenizer stopped at {i}, buffer holds {size} bytes")
    return tuple(records), None


def _decode_text(tag, value):
    try:
        return value.decode("utf-8"), None
    except UnicodeDecodeError:
        return None, ParseError(ErrorKind.INVALID_UTF8, tag=tag)


def _decode_amount(tag, value):
    try:
        text = value.decode("utf-8")
    except UnicodeDecodeError:
        return None, ParseError(ErrorKind.NOT_A_NUMBER, tag=tag, raw=value.decode("utf-8", errors="replace"))

    if not AMOUNT_PATTERN.fullmatch(text):
        return None, ParseError(ErrorKind.NOT_A_NUMBER, tag=tag, raw=text)
    return Decimal(text), None


def decode_field(tag, value):
    """Decodes one mandatory tag value per its TAG_INFO rule."""
    info = TAG_INFO[tag]
    if info["kind"] == "amount":
        return _decode_amount(tag, value)

    text, error = _decode_text(tag, value)
    if error:
        return None, error
    if info.get("non_empty") and not text:
        return None, ParseError(ErrorKind.MISSING_TAG, tag=tag)
    return text, None


def check_semantics(fields):
    """Advisory checks on structurally valid fields. Never rejects."""
    warnings = []

    vat_number = fields["vat_number"]
    if not VAT_NUMBER_PATTERN.fullmatch(vat_number):
        warnings.append(FieldWarning(
            WarningKind.SUSPICIOUS_VAT_NUMBER, 2,
            f"VAT number {vat_number!r} is not 15 ASCII digits"))

    if fields["vat_total"] > fields["invoice_total"]:
        warnings.append(FieldWarning(
            WarningKind.INCONSISTENT_AMOUNTS, 5,
            f"VAT total {fields['vat_total']} exceeds invoice total {fields['invoice_total']}"))

    return tuple(warnings)


def map_fields(records):
    """Interprets a TLV sequence as an invoice. Returns Valid or Invalid."""
    first = {}
    for record in records:
        # The first occurrence of a tag wins; later duplicates are ignored.
        if record.tag not in first:
            first[record.tag] = record.value

    fields = {}
    for tag in MANDATORY_TAGS:
        if tag not in first:
            return Invalid(ParseError(ErrorKind.MISSING_TAG, tag=tag))
        value, error = decode_field(tag, first[tag])
        if error:
            return Invalid(error)
        fields[TAG_INFO[tag]["field"]] = value

    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION
        subtotal = fields["invoice_total"] - fields["vat_total"]

    extended = {tag: value for tag, value in first.items() if tag not in MANDATORY_TAGS}

    return Valid(ParsedInvoice(
        seller_name=fields["seller_name"],
        vat_number=fields["vat_number"],
        timestamp=fields["timestamp"],
        invoice_total=fields["invoice_total"],
        vat_total=fields["vat_total"],
        subtotal=subtotal,
        extended_tags=MappingProxyType(extended),
        warnings=check_semantics(fields),
    ))


def parse_bytes(data):
    """Tokenizes and validates an already decoded buffer."""
    records, error = tokenize(data)
    if error:
        return Invalid(error)
    return map_fields(records)


def parse_qr(text):
    """Decodes captured QR text into a ParseOutcome (Valid or Invalid)."""
    data, error = decode_base64(text)
    if error:
        return Invalid(error)
    return parse_bytes(data)


def format_value(tag, value):
    """Renders a raw tag value for display: text when it decodes, base64 otherwise."""
    if tag in MANDATORY_TAGS or tag == 6 or tag == 7:
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            pass
    return "b64:" + base64.b64encode(value).decode("ascii")


def main():
    parser = argparse.ArgumentParser(description="ZATCA QR Payload Parser")
    parser.add_argument("qr", nargs="?", default=QR_TEXT_FILE,
                        help="Base64 QR text or a file containing it (default: qrcode.txt)")
    args = parser.parse_args()

    if os.path.exists(args.qr):
        with open(args.qr, "r", encoding="utf-8") as f:
            qr_content = f.read()
    elif args.qr == QR_TEXT_FILE:
        print(f"[!] Error: {QR_TEXT_FILE} not found. Run zatca_generator.py first.")
        return 1
    else:
        qr_content = args.qr

    print("=" * 110)
    print("ZATCA QR PARSER - E-INVOICE VALIDATOR")
    print("=" * 110)
    print(f"Raw Content: {qr_content.strip()}\n")

    # 1. Structural walk, shown even when the invoice is rejected
    data, error = decode_base64(qr_content)
    if data is not None:
        records, error = tokenize(data)
        if records is not None:
            print(f"{'TAG':3}  | {'LEN':3} | {'DESCRIPTION':30} | {'VALUE'}")
            print("-" * 110)
            for record in records:
                desc = TAG_INFO.get(record.tag, {}).get("desc", "Unknown Tag")
                print(f"{record.tag:3}  | {len(record.value):03} | {desc:30} | {format_value(record.tag, record.value)}")
            print()

    # 2. Field validation
    outcome = parse_qr(qr_content)
    if not outcome.is_valid:
        print(f"[!] Invalid QR code: {outcome.error}")
        print("=" * 110)
        return 1

    invoice = outcome.invoice
    print(f"[OK] Valid ZATCA QR from {invoice.seller_name}")
    print(f"{'Subtotal':25}: {invoice.subtotal}")
    print(f"{'VAT Total':25}: {invoice.vat_total}")
    print(f"{'Invoice Total':25}: {invoice.invoice_total}")
    for warning in invoice.warnings:
        print(f"[!] Warning: {warning}")
    print("=" * 110)
    return 0


if __name__ == "__main__":
    sys.exit(main())
