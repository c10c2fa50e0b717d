# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import hashlib
import json

import pytest
from cryptography import x509

from certbridge.attestation import AttestedMessage, EmitterAddress
from certbridge.encoding.exceptions import InvalidSnapshotError, SchemaMismatchError, TruncatedMessageError
from certbridge.snapshot import CertificateSnapshot, KeySet


def attested(payload: bytes) -> bytes:
    message = AttestedMessage(
        guardian_set_index=0,
        timestamp=1700000000,
        emitter_chain=10003,
        emitter_address=EmitterAddress.from_hex('0x' + 20 * '11'),
        sequence=1,
        payload=payload,
    )
    return message.to_wire()


@pytest.fixture
def snapshot(certificate_pem: str, other_certificate_pem: str) -> CertificateSnapshot:
    return CertificateSnapshot({'first': certificate_pem, 'second': other_certificate_pem})


class TestCertificateSnapshot:

    def test_from_payload(self, snapshot: CertificateSnapshot) -> None:
        decoded = CertificateSnapshot.from_payload(snapshot.to_payload())
        assert decoded == snapshot
        assert len(decoded) == 2
        assert CertificateSnapshot.from_payload(bytearray(b'{}')) == CertificateSnapshot()

    @pytest.mark.parametrize(
        ('payload', 'match'),
        [
            (b'\xff\xfe', 'not valid UTF-8'),
            (b'{"kid": ', 'not valid JSON'),
            (b'["pem"]', 'must be a JSON object, not list'),
            (b'{"kid": 1}', "The certificate for key 'kid' must be a string, not int"),
        ],
    )
    def test_invalid_payload(self, payload: bytes, match: str) -> None:
        with pytest.raises(InvalidSnapshotError, match=match):
            CertificateSnapshot.from_payload(payload)

    def test_from_message(self, snapshot: CertificateSnapshot) -> None:
        data = attested(snapshot.to_payload())
        assert CertificateSnapshot.from_message(data) == snapshot
        with pytest.raises(TruncatedMessageError):
            CertificateSnapshot.from_message(data[:50])

    def test_digest(self, certificate_pem: str, other_certificate_pem: str) -> None:
        forward = CertificateSnapshot({'first': certificate_pem, 'second': other_certificate_pem})
        backward = CertificateSnapshot({'second': other_certificate_pem, 'first': certificate_pem})
        assert forward.to_payload() != backward.to_payload()
        assert forward.canonical_json == backward.canonical_json
        assert forward.digest == backward.digest
        assert forward.digest == hashlib.sha256(json.dumps(dict(forward.certificates), sort_keys=True, separators=(',', ':')).encode()).hexdigest()
        assert CertificateSnapshot({'first': certificate_pem}).digest != forward.digest

    def test_public_keys(self, snapshot: CertificateSnapshot, certificate_pem: str, other_certificate_pem: str) -> None:
        keys = snapshot.public_keys()
        assert list(keys) == ['first', 'second']
        assert keys['first'].modulus_length == 256
        assert keys['first'].exponent_hex == '010001'
        assert keys['second'].modulus_length == 128
        assert keys['second'].exponent_hex == '03'
        expected = x509.load_pem_x509_certificate(other_certificate_pem.encode()).public_key().public_numbers()
        assert keys['second'].public_numbers() == expected

    def test_invalid_certificate(self, certificate_pem: str) -> None:
        snapshot = CertificateSnapshot({'good': certificate_pem, 'bad': '-----BEGIN CERTIFICATE-----\nMAA=\n-----END CERTIFICATE-----\n'})
        with pytest.raises(InvalidSnapshotError, match="Cannot extract the public key for 'bad'") as exc_info:
            snapshot.public_keys()
        assert isinstance(exc_info.value, SchemaMismatchError)
        assert exc_info.value.__cause__ is not None


class TestKeySet:

    def test_key_set(self, snapshot: CertificateSnapshot) -> None:
        key_set = snapshot.key_set(timestamp=1700000000)
        assert key_set.timestamp == 1700000000
        assert key_set.count == 2
        document = json.loads(key_set.to_json())
        assert document['timestamp'] == 1700000000
        assert document['count'] == 2
        assert [entry['kid'] for entry in document['keys']] == ['first', 'second']
        assert document['keys'][0]['e'] == '010001'
        assert len(document['keys'][0]['n']) == 512

    def test_default_timestamp(self, snapshot: CertificateSnapshot) -> None:
        assert snapshot.key_set().timestamp > 1700000000

    def test_from_json(self, snapshot: CertificateSnapshot) -> None:
        key_set = snapshot.key_set(timestamp=1700000000)
        decoded = KeySet.from_json(key_set.to_json())
        assert decoded.timestamp == key_set.timestamp
        assert decoded.count == key_set.count
        assert {kid: key.as_dict() for kid, key in decoded.keys.items()} == {kid: key.as_dict() for kid, key in key_set.keys.items()}
        assert KeySet.from_json(key_set.to_json().encode()).count == 2

    @pytest.mark.parametrize(
        ('document', 'match'),
        [
            ('not json', 'Invalid key set document'),
            ('{"count": 0, "keys": []}', "'timestamp'"),
            ('{"timestamp": "now", "count": 0, "keys": []}', 'the timestamp must be an integer'),
            ('{"timestamp": 1, "count": 2, "keys": [{"kid": "a", "n": "01", "e": "03"}]}', r'the count \(2\) does not match the number of keys \(1\)'),
            ('{"timestamp": 1, "count": 1, "keys": [{"kid": "a", "n": "zz", "e": "03"}]}', 'Invalid key set document'),
            ('{"timestamp": 1, "count": 1, "keys": [{"kid": "a", "n": "", "e": "03"}]}', 'cannot be empty'),
        ],
    )
    def test_invalid_document(self, document: str, match: str) -> None:
        with pytest.raises(InvalidSnapshotError, match=match):
            KeySet.from_json(document)
