# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509 import Certificate, CertificateBuilder, Name
from cryptography.x509.oid import NameOID


def make_certificate(private_key: RSAPrivateKey, common_name: str) -> Certificate:
    subject = Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    start_date = datetime.now(tz=UTC)
    return CertificateBuilder(
        issuer_name=subject,
        subject_name=subject,
        public_key=private_key.public_key(),
        serial_number=x509.random_serial_number(),
        not_valid_before=start_date,
        not_valid_after=start_date + timedelta(days=14),
    ).add_extension(
        x509.BasicConstraints(ca=False, path_length=None),
        critical=True,
    ).sign(private_key, algorithm=hashes.SHA256())


@pytest.fixture(scope='session')
def rsa_private_key() -> RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope='session')
def certificate(rsa_private_key: RSAPrivateKey) -> Certificate:
    return make_certificate(rsa_private_key, 'securetoken.example.com')


@pytest.fixture(scope='session')
def certificate_der(certificate: Certificate) -> bytes:
    return certificate.public_bytes(Encoding.DER)


@pytest.fixture(scope='session')
def certificate_pem(certificate: Certificate) -> str:
    return certificate.public_bytes(Encoding.PEM).decode('ascii')


@pytest.fixture(scope='session')
def other_certificate_pem() -> str:
    private_key = rsa.generate_private_key(public_exponent=3, key_size=1024)
    return make_certificate(private_key, 'other.example.com').public_bytes(Encoding.PEM).decode('ascii')
