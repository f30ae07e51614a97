import base64
import hashlib
import json
from decimal import Decimal

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

import zatca_generator
from keygen import generate_seller_identity
from zatca_generator import (
    build_signed_stamp,
    core_records,
    encode_invoice,
    encode_tlv,
    format_amount,
)
from zatca_parser import parse_qr

ACME_TEMPLATE = {
    "sellerName": "Acme Corp",
    "vatNumber": "300000000000003",
    "timestamp": "2023-01-05T13:00:00",
    "invoiceTotal": "115.00",
    "vatTotal": "15.00",
}


def test_encode_tlv_layout():
    assert encode_tlv([(1, "ab"), (7, b""), (2, "é")]) == b"\x01\x02ab\x07\x00\x02\x02\xc3\xa9"


@pytest.mark.parametrize("records", [
    [(1, "x" * 256)],
    [(256, "x")],
    [(-1, "x")],
])
def test_encode_tlv_rejects_unencodable_records(records):
    with pytest.raises(ValueError):
        encode_tlv(records)


def test_encode_tlv_accepts_255_bytes():
    assert len(encode_tlv([(1, b"x" * 255)])) == 257


@pytest.mark.parametrize("amount, expected", [
    (Decimal("115.00"), "115.00"),
    (Decimal("1E-7"), "0.0000001"),
    (Decimal("1E+3"), "1000"),
    ("15.00", "15.00"),
])
def test_format_amount_is_plain_fixed_point(amount, expected):
    assert format_amount(amount) == expected


def test_format_amount_refuses_float():
    with pytest.raises(ValueError):
        format_amount(115.0)


def test_encode_invoice_matches_acme_scenario():
    qr_text = encode_invoice("Acme Corp", "300000000000003", "2023-01-05T13:00:00",
                             Decimal("115.00"), Decimal("15.00"))

    invoice = parse_qr(qr_text).invoice

    assert invoice.subtotal == Decimal("100.00")
    assert invoice.warnings == ()


def test_encode_invoice_appends_extended_tags_in_tag_order():
    qr_text = encode_invoice("Acme Corp", "300000000000003", "2023-01-05T13:00:00",
                             "115.00", "15.00", {9: b"\x01", 6: "hash"})

    data = base64.b64decode(qr_text)

    assert data.endswith(b"\x06\x04hash\x09\x01\x01")


@pytest.fixture
def seller_identity(tmp_path):
    key_path, cert_path, csr_path = generate_seller_identity("acme", "300000000000003", str(tmp_path))
    with open(key_path, "rb") as f:
        key_pem = f.read()
    with open(cert_path, "rb") as f:
        cert_pem = f.read()
    return key_pem, cert_pem, csr_path


def test_keygen_writes_secp256k1_identity(seller_identity):
    key_pem, cert_pem, csr_path = seller_identity

    key = serialization.load_pem_private_key(key_pem, password=None)
    cert = x509.load_pem_x509_certificate(cert_pem)
    with open(csr_path, "rb") as f:
        csr = x509.load_pem_x509_csr(f.read())

    assert isinstance(key.curve, ec.SECP256K1)
    assert cert.public_key().public_numbers() == key.public_key().public_numbers()
    assert csr.is_signature_valid


def test_signed_stamp_passes_through_parser(seller_identity):
    key_pem, cert_pem, _ = seller_identity
    records = core_records("Acme Corp", "300000000000003", "2023-01-05T13:00:00", "115.00", "15.00")
    stamp = build_signed_stamp(encode_tlv(records), key_pem, cert_pem)

    qr_text = encode_invoice("Acme Corp", "300000000000003", "2023-01-05T13:00:00",
                             "115.00", "15.00", stamp)
    outcome = parse_qr(qr_text)

    assert outcome.is_valid
    extended = outcome.invoice.extended_tags
    assert set(extended) == {6, 7, 8, 9}

    # The parser leaves the stamp untouched; verification happens here, outside it.
    cert = x509.load_pem_x509_certificate(cert_pem)
    public_key = serialization.load_der_public_key(extended[8])
    assert public_key.public_numbers() == cert.public_key().public_numbers()
    public_key.verify(base64.b64decode(extended[7]), extended[6], ec.ECDSA(hashes.SHA256()))
    assert extended[9] == cert.signature


def test_signed_stamp_hashes_invoice_document(seller_identity):
    key_pem, cert_pem, _ = seller_identity

    stamp = build_signed_stamp(b"tlv", key_pem, cert_pem, invoice_bytes=b"<Invoice/>")

    assert base64.b64decode(stamp[6]) == hashlib.sha256(b"<Invoice/>").digest()


def write_template(tmp_path, template):
    path = tmp_path / "template.json"
    path.write_text(json.dumps(template, ensure_ascii=False), encoding="utf-8")
    return str(path)


def test_generator_cli_writes_qr_files(tmp_path, monkeypatch):
    template = write_template(tmp_path, ACME_TEMPLATE)
    out_dir = tmp_path / "out"
    monkeypatch.setattr("sys.argv", ["zatca_generator.py", template, "--out-dir", str(out_dir)])

    assert zatca_generator.main() == 0

    qr_text = (out_dir / "qrcode.txt").read_text(encoding="utf-8")
    assert parse_qr(qr_text).invoice.seller_name == "Acme Corp"
    assert json.loads((out_dir / "invoice.json").read_text(encoding="utf-8"))["qrCodeContent"] == qr_text
    assert (out_dir / "qrcode.png").stat().st_size > 0


def test_generator_cli_adds_stamp(tmp_path, monkeypatch, seller_identity):
    template = write_template(tmp_path, ACME_TEMPLATE)
    monkeypatch.setattr("sys.argv", [
        "zatca_generator.py", template, "--out-dir", str(tmp_path),
        "--key", str(tmp_path / "acme_key.pem"), "--cert", str(tmp_path / "acme_cert.pem"),
    ])

    assert zatca_generator.main() == 0

    invoice = parse_qr((tmp_path / "qrcode.txt").read_text(encoding="utf-8")).invoice
    assert set(invoice.extended_tags) == {6, 7, 8, 9}


def test_generator_cli_rejects_bad_template(tmp_path, monkeypatch, capsys):
    template = write_template(tmp_path, dict(ACME_TEMPLATE, invoiceTotal="115,00"))
    monkeypatch.setattr("sys.argv", ["zatca_generator.py", template, "--out-dir", str(tmp_path)])

    assert zatca_generator.main() == 1
    assert "Template Validation Error" in capsys.readouterr().out
    assert not (tmp_path / "qrcode.txt").exists()


def test_generator_cli_reports_oversized_field_with_stamp(tmp_path, monkeypatch, capsys, seller_identity):
    template = write_template(tmp_path, dict(ACME_TEMPLATE, sellerName="A" * 300))
    monkeypatch.setattr("sys.argv", [
        "zatca_generator.py", template, "--out-dir", str(tmp_path),
        "--key", str(tmp_path / "acme_key.pem"), "--cert", str(tmp_path / "acme_cert.pem"),
    ])

    assert zatca_generator.main() == 1
    assert "[!] Encoding Error: Tag 1 value too long" in capsys.readouterr().out
    assert not (tmp_path / "qrcode.txt").exists()


def test_generator_cli_missing_template(tmp_path, monkeypatch):
    monkeypatch.setattr("sys.argv", ["zatca_generator.py", str(tmp_path / "nope.json")])

    assert zatca_generator.main() == 1
