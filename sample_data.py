# Purpose: Generate sample ZATCA QR payloads, both well-formed and corrupted,
# for exercising the parser and the app server.

import argparse
import base64
import json
import os
import random
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP

from zatca_generator import core_records, encode_invoice, encode_tlv
from zatca_parser import MAX_PAYLOAD_CHARS, ErrorKind

# --- 1. CONFIGURATION SEED DATA ---
SAMPLE_DIR = "sample_data"
VAT_RATE = Decimal("0.15")
CENTS = Decimal("0.01")

SELLERS = [
    {"name": "Acme Corp", "vat": "300000000000003"},
    {"name": "شركة التوريدات المتحدة", "vat": "310122393500003"},
    {"name": "Red Sea Trading Est.", "vat": "311111111111113"},
    {"name": "مؤسسة النخيل للمقاولات", "vat": "302345678900003"},
    {"name": "Najd Coffee Roasters", "vat": "399999999900003"},
    {"name": "مطعم البيك", "vat": "300456789100003"},
]


# --- 2. THE INVOICE FACTORY (VALID SAMPLES) ---
class InvoiceFactory:
    def __init__(self, rng=None):
        self.rng = rng or random.Random()

    def _vat_number(self):
        # Saudi VAT numbers are 15 digits, starting and ending with 3.
        middle = "".join(self.rng.choice("0123456789") for _ in range(13))
        return f"3{middle}3"

    def _timestamp(self):
        base = datetime(2023, 1, 1, tzinfo=timezone.utc)
        dt = base + timedelta(minutes=self.rng.randint(0, 3 * 365 * 24 * 60))
        return dt.strftime(self.rng.choice(["%Y-%m-%dT%H:%M:%SZ", "%Y-%m-%dT%H:%M:%S"]))

    def generate_sample(self):
        """Returns an InvoiceTemplate dict with consistent 15% VAT amounts."""
        seller = self.rng.choice(SELLERS)
        subtotal = Decimal(self.rng.randint(100, 9999999)) * CENTS
        vat_total = (subtotal * VAT_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)
        return {
            "sellerName": seller["name"],
            "vatNumber": seller["vat"] if self.rng.random() < 0.5 else self._vat_number(),
            "timestamp": self._timestamp(),
            "invoiceTotal": format(subtotal + vat_total, "f"),
            "vatTotal": format(vat_total, "f"),
        }

    def generate_qr_text(self):
        sample = self.generate_sample()
        return encode_invoice(sample["sellerName"], sample["vatNumber"], sample["timestamp"],
                              sample["invoiceTotal"], sample["vatTotal"])


# --- 3. THE CHAOS FACTORY (CORRUPTED SAMPLES) ---
class ChaosFactory(InvoiceFactory):
    def generate_invalid_sample(self):
        """Returns (qr_text, expected ErrorKind)."""
        rule = self.rng.choice([
            self._truncated, self._inflated_length, self._missing_tag,
            self._bad_amount, self._bad_utf8, self._junk_base64, self._oversized,
        ])
        return rule(self._records())

    def _records(self):
        sample = self.generate_sample()
        return core_records(sample["sellerName"], sample["vatNumber"], sample["timestamp"],
                            sample["invoiceTotal"], sample["vatTotal"])

    def _b64(self, data):
        return base64.b64encode(data).decode("ascii")

    def _truncated(self, records):
        data = encode_tlv(records)
        # Cut inside the last record so no record boundary survives at the end.
        last_size = 2 + len(records[-1][1].encode("utf-8"))
        cut = self.rng.randint(1, last_size - 1)
        return self._b64(data[:-cut]), ErrorKind.TRUNCATED

    def _inflated_length(self, records):
        data = encode_tlv(records) + bytes([9, 200]) + b"\x00" * self.rng.randint(0, 199)
        return self._b64(data), ErrorKind.TRUNCATED

    def _missing_tag(self, records):
        dropped = self.rng.randint(1, 5)
        kept = [r for r in records if r[0] != dropped]
        return self._b64(encode_tlv(kept)), ErrorKind.MISSING_TAG

    def _bad_amount(self, records):
        tag = self.rng.choice([4, 5])
        bad = self.rng.choice(["12,50", "-1.00", "1e3", "NaN", " 10.00", "SAR 10", "١٠٠", ""])
        records = [(t, bad if t == tag else v) for t, v in records]
        return self._b64(encode_tlv(records)), ErrorKind.NOT_A_NUMBER

    def _bad_utf8(self, records):
        tag = self.rng.choice([1, 2, 3])
        records = [(t, b"\xff\xfe\xc3" if t == tag else v) for t, v in records]
        return self._b64(encode_tlv(records)), ErrorKind.INVALID_UTF8

    def _junk_base64(self, records):
        text = self._b64(encode_tlv(records))
        junk = self.rng.choice(["!", "*", "~", "%", "é"])
        pos = self.rng.randint(0, len(text))
        return text[:pos] + junk + text[pos:], ErrorKind.INVALID_BASE64

    def _oversized(self, records):
        text = self._b64(encode_tlv(records))
        repeat = MAX_PAYLOAD_CHARS // len(text) + 1
        return text * repeat, ErrorKind.PAYLOAD_TOO_LARGE


def main():
    parser = argparse.ArgumentParser(description="Generate sample ZATCA QR payloads")
    parser.add_argument("--count", type=int, default=10, help="Number of samples to generate", metavar="NUMBER")
    parser.add_argument("--out", default=SAMPLE_DIR, help="Output directory")
    parser.add_argument("--seed", type=int, help="Random seed for reproducible samples")
    parser.add_argument("--corrupt", type=float, default=0.2, help="Share of corrupted samples (0-1)")
    args = parser.parse_args()

    rng = random.Random(args.seed)
    valid_gen = InvoiceFactory(rng)
    invalid_gen = ChaosFactory(rng)

    for folder in ["valid", "invalid"]:
        os.makedirs(os.path.join(args.out, folder), exist_ok=True)

    print(f"[*] Generating {args.count} samples...")
    expected = {}
    for i in range(args.count):
        if rng.random() < args.corrupt:
            qr_text, kind = invalid_gen.generate_invalid_sample()
            filename = os.path.join(args.out, "invalid", f"invalid_sample_{i}.txt")
            expected[os.path.basename(filename)] = kind.value
        else:
            qr_text = valid_gen.generate_qr_text()
            filename = os.path.join(args.out, "valid", f"valid_sample_{i}.txt")

        with open(filename, "w", encoding="utf-8") as f:
            f.write(qr_text)

    with open(os.path.join(args.out, "invalid", "expected.json"), "w", encoding="utf-8") as f:
        json.dump(expected, f, indent=2)

    print(f"[OK] Done! Check the '{args.out}/' directory.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
