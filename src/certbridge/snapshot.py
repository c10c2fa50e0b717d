# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Certificate snapshots carried as the payload of attested messages.

The payload is a UTF-8 encoded JSON object that maps key identifiers to PEM
certificates, as published by the certificate provider:

    {"<key id>": "-----BEGIN CERTIFICATE-----\\n...", ...}

The keys extracted from a snapshot are handed onwards as a key set document:

    {"timestamp": 1700000000, "count": 2, "keys": [{"kid": "...", "n": "<hex>", "e": "010001"}, ...]}
"""

import hashlib
import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Self

from .attestation import extract_payload
from .certificates import PublicKeyComponents, read_public_key
from .encoding.exceptions import DecodingError, InvalidSnapshotError

__all__ = 'CertificateSnapshot', 'KeySet'


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CertificateSnapshot:
    certificates: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: bytes | bytearray | memoryview) -> Self:
        try:
            document = json.loads(bytes(payload).decode('utf-8'))
        except UnicodeDecodeError as exc:
            raise InvalidSnapshotError(f'The snapshot payload is not valid UTF-8: {exc}') from exc
        except json.JSONDecodeError as exc:
            raise InvalidSnapshotError(f'The snapshot payload is not valid JSON: {exc}') from exc
        if not isinstance(document, dict):
            raise InvalidSnapshotError(f'The snapshot payload must be a JSON object, not {type(document).__name__}')
        for kid, certificate in document.items():
            if not isinstance(certificate, str):
                raise InvalidSnapshotError(f'The certificate for key {kid!r} must be a string, not {type(certificate).__name__}')
        log.debug('Decoded certificate snapshot with %d certificates', len(document))
        return cls(document)

    @classmethod
    def from_message(cls, buffer: bytes | bytearray | memoryview) -> Self:
        """Decode the snapshot carried by an attested message (TruncatedMessageError propagates unchanged)"""
        return cls.from_payload(extract_payload(buffer))

    def __len__(self) -> int:
        return len(self.certificates)

    @property
    def canonical_json(self) -> str:
        return json.dumps(dict(self.certificates), sort_keys=True, separators=(',', ':'))

    @property
    def digest(self) -> str:
        """The SHA-256 digest (hex) of the canonical JSON representation, which does not depend on key order"""
        return hashlib.sha256(self.canonical_json.encode()).hexdigest()

    def to_payload(self) -> bytes:
        return json.dumps(dict(self.certificates), separators=(',', ':')).encode()

    def public_keys(self) -> dict[str, PublicKeyComponents]:
        keys = {}
        for kid, certificate in self.certificates.items():
            try:
                keys[kid] = read_public_key(certificate)
            except DecodingError as exc:
                raise InvalidSnapshotError(f'Cannot extract the public key for {kid!r}: {exc}') from exc
        return keys

    def key_set(self, timestamp: int | None = None) -> 'KeySet':
        return KeySet(timestamp=int(time.time()) if timestamp is None else timestamp, keys=self.public_keys())


@dataclass(frozen=True)
class KeySet:
    timestamp: int
    keys: Mapping[str, PublicKeyComponents] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.keys)

    def to_json(self) -> str:
        return json.dumps({'timestamp': self.timestamp, 'count': self.count, 'keys': [{'kid': kid, **key.as_dict()} for kid, key in self.keys.items()]})

    @classmethod
    def from_json(cls, text: str | bytes) -> Self:
        try:
            document = json.loads(text)
            timestamp = document['timestamp']
            count = document['count']
            keys = {entry['kid']: PublicKeyComponents(modulus=bytes.fromhex(entry['n']), exponent=bytes.fromhex(entry['e'])) for entry in document['keys']}
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidSnapshotError(f'Invalid key set document: {exc}') from exc
        if not isinstance(timestamp, int):
            raise InvalidSnapshotError(f'Invalid key set document: the timestamp must be an integer, not {timestamp!r}')
        if count != len(keys):
            raise InvalidSnapshotError(f'Invalid key set document: the count ({count!r}) does not match the number of keys ({len(keys)})')
        return cls(timestamp=timestamp, keys=keys)
