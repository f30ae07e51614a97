# Purpose: Build ZATCA e-invoice QR payloads (TLV + base64) and QR images.
# Used to produce sample codes for the parser and to re-encode parsed invoices.

import argparse
import base64
import hashlib
import json
import os
import sys
from decimal import Decimal

import qrcode
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from zatca_schema import validate_against_schema

# --- CONFIGURATION ---
QR_TEXT_FILE = "qrcode.txt"
QR_IMAGE_FILE = "qrcode.png"
INVOICE_FILE = "invoice.json"
MAX_VALUE_BYTES = 255


def format_amount(amount):
    """Renders a Decimal or numeric string as plain fixed-point text (no exponent)."""
    if isinstance(amount, Decimal):
        return format(amount, "f")
    if isinstance(amount, float):
        raise ValueError("Amounts must be Decimal or str, not float")
    return str(amount)


def encode_tlv(records):
    """Encodes (tag, value) pairs as TLV bytes. str values are UTF-8 encoded."""
    def tlv(tag, value):
        if isinstance(value, str):
            value = value.encode("utf-8")
        if not 0 <= tag <= 255:
            raise ValueError(f"Invalid tag number: {tag} (must be 0-255)")
        if len(value) > MAX_VALUE_BYTES:
            raise ValueError(f"Tag {tag} value too long: {len(value)} bytes (max {MAX_VALUE_BYTES})")
        return bytes([tag, len(value)]) + bytes(value)

    return b"".join(tlv(tag, value) for tag, value in records)


def core_records(seller_name, vat_number, timestamp, invoice_total, vat_total):
    return [
        (1, seller_name),
        (2, vat_number),
        (3, timestamp),
        (4, format_amount(invoice_total)),
        (5, format_amount(vat_total)),
    ]


def encode_invoice(seller_name, vat_number, timestamp, invoice_total, vat_total, extended_tags=None):
    """Encodes the five mandatory fields, plus optional extended tags, as base64 QR text."""
    records = core_records(seller_name, vat_number, timestamp, invoice_total, vat_total)
    for tag, value in sorted((extended_tags or {}).items()):
        records.append((tag, value))
    return base64.b64encode(encode_tlv(records)).decode("ascii")


def invoice_to_qr_text(invoice, include_extended=False):
    """Re-encodes a ParsedInvoice back into QR text."""
    extended = dict(invoice.extended_tags) if include_extended else None
    return encode_invoice(invoice.seller_name, invoice.vat_number, invoice.timestamp,
                          invoice.invoice_total, invoice.vat_total, extended)


def build_signed_stamp(core_tlv, key_pem, cert_pem, invoice_bytes=None):
    """Produces the phase 2 extended tags (6-9) for a seller identity from keygen.py."""
    # Tag 6 hashes the invoice document when given, the core TLV bytes otherwise.
    digest = hashlib.sha256(invoice_bytes if invoice_bytes is not None else core_tlv).digest()
    invoice_hash = base64.b64encode(digest).decode("ascii")

    private_key = serialization.load_pem_private_key(key_pem, password=None)
    if not isinstance(private_key, ec.EllipticCurvePrivateKey):
        raise ValueError("Seller key must be an EC private key")
    signature = private_key.sign(invoice_hash.encode("ascii"), ec.ECDSA(hashes.SHA256()))

    cert = x509.load_pem_x509_certificate(cert_pem)
    public_key_der = cert.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    return {
        6: invoice_hash,
        7: base64.b64encode(signature).decode("ascii"),
        8: public_key_der,
        9: cert.signature,
    }


def load_template(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_qr_image(qr_text, path):
    qr = qrcode.QRCode(version=None, box_size=10, border=4)
    qr.add_data(qr_text)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    img.save(path)


def main():
    parser = argparse.ArgumentParser(description="ZATCA QR Code Generator")
    parser.add_argument("template", help="Path to the invoice JSON template")
    parser.add_argument("--key", help="Seller private key (PEM) for a phase 2 stamp")
    parser.add_argument("--cert", help="Seller certificate (PEM) for a phase 2 stamp")
    parser.add_argument("--invoice", help="Invoice document to hash into tag 6 (default: the TLV itself)")
    parser.add_argument("--out-dir", default=".", help="Directory for qrcode.txt, invoice.json and qrcode.png")
    args = parser.parse_args()

    if not os.path.exists(args.template):
        print(f"[!] Error: Template file '{args.template}' not found.")
        return 1
    if bool(args.key) != bool(args.cert):
        print("[!] Error: --key and --cert must be given together.")
        return 1

    template = load_template(args.template)
    is_valid, error_msg = validate_against_schema(template, "InvoiceTemplate")
    if not is_valid:
        print(f"[!] Template Validation Error: {error_msg}")
        return 1
    print("[OK] Template validated against InvoiceTemplate")

    records = core_records(template["sellerName"], template["vatNumber"], template["timestamp"],
                           template["invoiceTotal"], template["vatTotal"])
    extended = {}
    if args.key:
        try:
            with open(args.key, "rb") as f:
                key_pem = f.read()
            with open(args.cert, "rb") as f:
                cert_pem = f.read()
            invoice_bytes = None
            if args.invoice:
                with open(args.invoice, "rb") as f:
                    invoice_bytes = f.read()
        except FileNotFoundError as e:
            print(f"[!] Error: {e.filename} not found. Run keygen.py first.")
            return 1

    try:
        if args.key:
            extended = build_signed_stamp(encode_tlv(records), key_pem, cert_pem, invoice_bytes)
            print("[*] Phase 2 stamp added (tags 6-9).")
        qr_text = encode_invoice(template["sellerName"], template["vatNumber"], template["timestamp"],
                                 template["invoiceTotal"], template["vatTotal"], extended)
    except ValueError as e:
        print(f"[!] Encoding Error: {e}")
        return 1

    os.makedirs(args.out_dir, exist_ok=True)
    text_path = os.path.join(args.out_dir, QR_TEXT_FILE)
    with open(text_path, "w", encoding="utf-8") as f:
        f.write(qr_text)
    print(f"[*] Raw QR string saved to '{text_path}'.")

    invoice_path = os.path.join(args.out_dir, INVOICE_FILE)
    with open(invoice_path, "w", encoding="utf-8") as f:
        json.dump(dict(template, qrCodeContent=qr_text), f, indent=4, ensure_ascii=False)
    print(f"[*] Invoice with QR content saved to '{invoice_path}'.")

    print("[*] Generating QR Code Image...")
    image_path = os.path.join(args.out_dir, QR_IMAGE_FILE)
    write_qr_image(qr_text, image_path)
    print(f"[*] QR Code image saved as '{image_path}'.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
