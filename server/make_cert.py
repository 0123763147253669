#!/usr/bin/env python3
"""
Generate a self-signed TLS certificate for running the server over HTTPS.

Writes settings.CERT_FILE and settings.KEY_FILE (cert.pem / privkey.pem in
server/certs by default). Existing files are left alone unless --force is
given.
"""
import argparse
import datetime
import ipaddress
import logging
import os

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

import settings

logging.basicConfig(level=logging.INFO, format="[CERT] %(message)s")
logger = logging.getLogger(__name__)


def generate_cert(cert_file, key_file, days=365):
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
        x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, "CA"),
        x509.NameAttribute(NameOID.LOCALITY_NAME, "San Francisco"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Prof Network"),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "Dev"),
        x509.NameAttribute(NameOID.COMMON_NAME, "localhost"),
    ])

    now = datetime.datetime.now(datetime.timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(
            x509.SubjectAlternativeName([
                x509.DNSName("localhost"),
                x509.DNSName("127.0.0.1"),
                x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")),
            ]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    for path in (cert_file, key_file):
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    with open(key_file, "wb") as f:
        f.write(key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        ))

    with open(cert_file, "wb") as f:
        f.write(cert.public_bytes(serialization.Encoding.PEM))

    logger.info(f"Certificate written to {cert_file}")
    logger.info(f"Private key written to {key_file}")
    return cert


def main(argv=None):
    parser = argparse.ArgumentParser(description="Generate a self-signed certificate")
    parser.add_argument("--cert", default=settings.CERT_FILE)
    parser.add_argument("--key", default=settings.KEY_FILE)
    parser.add_argument("--days", type=int, default=365)
    parser.add_argument("--force", action="store_true", help="overwrite existing files")
    args = parser.parse_args(argv)

    if os.path.exists(args.cert) and os.path.exists(args.key) and not args.force:
        logger.info("TLS certificate already exists - skipping generation.")
        return 0

    logger.info("Generating self-signed TLS certificate ...")
    generate_cert(args.cert, args.key, args.days)
    logger.info("Start the server with PROF_USE_HTTPS=1 to serve over HTTPS")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
