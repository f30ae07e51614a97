# Purpose: Generate a seller signing identity for phase 2 sample QR stamps.
# Self-signed; real ZATCA certificates are issued by the authority's CA.

import argparse
import os
import sys
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

# --- CONFIGURATION ---
CERT_DIR = "seller_db/certs"
CERT_VALIDITY_DAYS = 365


def seller_subject(name, vat_number):
    return x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "SA"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, name),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, vat_number),
        x509.NameAttribute(NameOID.COMMON_NAME, f"{name} EGS"),
    ])


def generate_seller_identity(name, vat_number, out_dir=CERT_DIR):
    """Writes <name>_key.pem, <name>_cert.pem and <name>.csr to out_dir. Returns their paths."""
    print(f"[*] Generating keys for {name}...")
    os.makedirs(out_dir, exist_ok=True)

    # ZATCA stamps use ECDSA over secp256k1.
    private_key = ec.generate_private_key(ec.SECP256K1())

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    key_path = os.path.join(out_dir, f"{name}_key.pem")
    with open(key_path, "wb") as f:
        f.write(private_pem)

    subject = issuer = seller_subject(name, vat_number)
    now = datetime.now(timezone.utc)
    cert = x509.CertificateBuilder().subject_name(
        subject
    ).issuer_name(
        issuer
    ).public_key(
        private_key.public_key()
    ).serial_number(
        x509.random_serial_number()
    ).not_valid_before(
        now
    ).not_valid_after(
        now + timedelta(days=CERT_VALIDITY_DAYS)
    ).sign(private_key, hashes.SHA256())

    cert_path = os.path.join(out_dir, f"{name}_cert.pem")
    with open(cert_path, "wb") as f:
        f.write(cert.public_bytes(serialization.Encoding.PEM))

    # The CSR is what a seller submits to obtain a production certificate.
    csr = x509.CertificateSigningRequestBuilder().subject_name(
        subject
    ).sign(private_key, hashes.SHA256())
    csr_path = os.path.join(out_dir, f"{name}.csr")
    with open(csr_path, "wb") as f:
        f.write(csr.public_bytes(serialization.Encoding.PEM))

    print(f"[OK] Created {key_path}, {cert_path} and {csr_path}")
    return key_path, cert_path, csr_path


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="ZATCA seller key generator")
    parser.add_argument("name", nargs="?", default="seller", help="File prefix and organization name")
    parser.add_argument("--vat", default="300000000000003", help="Seller VAT registration number")
    parser.add_argument("--out-dir", default=CERT_DIR)
    args = parser.parse_args()

    generate_seller_identity(args.name, args.vat, args.out_dir)
    sys.exit(0)
