# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Extraction of the RSA public key from an X.509 certificate.

The relevant part of the certificate structure (RFC 5280) is:

    Certificate  ::=  SEQUENCE  {
        tbsCertificate       TBSCertificate,
        signatureAlgorithm   AlgorithmIdentifier,
        signatureValue       BIT STRING  }

    TBSCertificate  ::=  SEQUENCE  {
        version         [0]  EXPLICIT Version DEFAULT v1,
        serialNumber         CertificateSerialNumber,
        signature            AlgorithmIdentifier,
        issuer               Name,
        validity             Validity,
        subject              Name,
        subjectPublicKeyInfo SubjectPublicKeyInfo,
        ... }

    SubjectPublicKeyInfo  ::=  SEQUENCE  {
        algorithm            AlgorithmIdentifier,
        subjectPublicKey     BIT STRING  }

and the bit string of an RSA key holds the DER encoding of (RFC 8017):

    RSAPublicKey ::= SEQUENCE {
        modulus           INTEGER,  -- n
        publicExponent    INTEGER   -- e
    }

Only the structure is navigated. The certificate signature, its validity
period and its issuer are not checked.
"""

import binascii
import logging
from dataclasses import dataclass
from os import PathLike
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey, RSAPublicNumbers

from certbridge.encoding import der
from certbridge.encoding.datamodel import strip_sign_padding
from certbridge.encoding.der import Node, TagClass, UniversalTag
from certbridge.encoding.exceptions import InvalidPublicKeyError, MalformedEncodingError, SchemaMismatchError

__all__ = 'PublicKeyComponents', 'pem_to_der', 'der_to_pem', 'locate_public_key_info', 'extract_key_components', 'read_public_key', 'load_public_key'


log = logging.getLogger(__name__)


PEM_HEADER = '-----BEGIN CERTIFICATE-----'
PEM_FOOTER = '-----END CERTIFICATE-----'
PEM_LINE_LENGTH = 64

RSA_ENCRYPTION_OID = '1.2.840.113549.1.1.1'

# Position of subjectPublicKeyInfo in TBSCertificate, counted after the optional version field
PUBLIC_KEY_INFO_POSITION = 5


@dataclass(frozen=True)
class PublicKeyComponents:
    """The modulus and the exponent of an RSA public key, as minimal big-endian bytes"""

    modulus: bytes
    exponent: bytes
    algorithm: str | None = None

    def __post_init__(self) -> None:
        if not self.modulus or not self.exponent:
            raise ValueError('The modulus and the exponent cannot be empty')

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}(modulus=<{self.modulus_length} bytes>, exponent={self.exponent_hex!r}, algorithm={self.algorithm!r})'

    @property
    def modulus_hex(self) -> str:
        return self.modulus.hex()

    @property
    def exponent_hex(self) -> str:
        return self.exponent.hex()

    @property
    def modulus_length(self) -> int:
        return len(self.modulus)

    @property
    def exponent_length(self) -> int:
        return len(self.exponent)

    @property
    def key_size(self) -> int:
        """The size of the key in bits"""
        return int.from_bytes(self.modulus, byteorder='big').bit_length()

    def public_numbers(self) -> RSAPublicNumbers:
        return RSAPublicNumbers(e=int.from_bytes(self.exponent, byteorder='big'), n=int.from_bytes(self.modulus, byteorder='big'))

    def public_key(self) -> RSAPublicKey:
        return self.public_numbers().public_key()

    def as_dict(self) -> dict[str, str]:
        return {'n': self.modulus_hex, 'e': self.exponent_hex}


def pem_to_der(text: str | bytes) -> bytes:
    """Return the DER bytes of the first certificate found between the PEM markers in text"""
    if isinstance(text, bytes):
        try:
            text = text.decode('ascii')
        except UnicodeDecodeError as exc:
            raise MalformedEncodingError(f'The certificate text is not ASCII: {exc}') from exc
    start = text.find(PEM_HEADER)
    end = text.find(PEM_FOOTER, start + len(PEM_HEADER)) if start != -1 else -1
    if start == -1 or end == -1:
        raise MalformedEncodingError(f'Could not find the {PEM_HEADER!r} and {PEM_FOOTER!r} markers in the certificate text')
    body = ''.join(text[start + len(PEM_HEADER):end].split())
    try:
        data = binascii.a2b_base64(body, strict_mode=True)
    except binascii.Error as exc:
        raise MalformedEncodingError(f'The certificate text does not contain valid base64 data: {exc}') from exc
    if not data:
        raise MalformedEncodingError('The certificate text does not contain any data between the PEM markers')
    return data


def der_to_pem(data: bytes) -> str:
    encoded = binascii.b2a_base64(data, newline=False).decode('ascii')
    lines = [encoded[index:index + PEM_LINE_LENGTH] for index in range(0, len(encoded), PEM_LINE_LENGTH)]
    return '\n'.join([PEM_HEADER, *lines, PEM_FOOTER]) + '\n'


def locate_public_key_info(root: Node) -> Node:
    """Return the subjectPublicKeyInfo node from the decoded certificate"""
    if not root.constructed or not root.children:
        raise SchemaMismatchError('The certificate is not a constructed element with at least one child')
    tbs_certificate = root.children[0]
    if not tbs_certificate.constructed:
        raise SchemaMismatchError('The TBSCertificate element of the certificate is not constructed')
    elements = tbs_certificate.children
    position = PUBLIC_KEY_INFO_POSITION
    # The version is recognized by its tag, not by the number of elements that follow it.
    if elements and elements[0].tag_class is TagClass.CONTEXT_SPECIFIC and elements[0].tag_number == 0:
        log.debug('Skipping the explicit version field of the certificate')
        position += 1
    if position >= len(elements):
        raise SchemaMismatchError(f'The TBSCertificate has {len(elements)} elements, the subjectPublicKeyInfo was expected at position {position}')
    return elements[position]


def extract_key_components(public_key_info: Node) -> PublicKeyComponents:
    """Return the RSA modulus and exponent from a subjectPublicKeyInfo node"""
    if not public_key_info.constructed or len(public_key_info.children) < 2:
        raise InvalidPublicKeyError('The subjectPublicKeyInfo must be a constructed element with at least 2 children')
    algorithm = _algorithm_oid(public_key_info.children[0])

    bit_string = public_key_info.children[1]
    if bit_string.constructed or not bit_string.is_universal(UniversalTag.BIT_STRING):
        raise InvalidPublicKeyError(f'The subjectPublicKey element is not a primitive BIT STRING: {bit_string!r}')
    if len(bit_string.value) < 2:
        raise InvalidPublicKeyError(f'The subjectPublicKey BIT STRING is too short ({len(bit_string.value)} bytes)')
    if bit_string.value[0] != 0:
        raise InvalidPublicKeyError(f'The subjectPublicKey BIT STRING has {bit_string.value[0]} unused bits (expected 0)')

    try:
        rsa_public_key = der.decode_single(bit_string.value[1:])
    except MalformedEncodingError as exc:
        raise InvalidPublicKeyError(f'Cannot decode the RSAPublicKey from the subjectPublicKey BIT STRING: {exc}') from exc
    if not rsa_public_key.constructed or len(rsa_public_key.children) < 2:
        raise InvalidPublicKeyError('The RSAPublicKey must be a constructed element with at least 2 children (modulus, exponent)')

    modulus, exponent = rsa_public_key.children[:2]
    if not modulus.is_integer:
        raise InvalidPublicKeyError(f'The RSAPublicKey modulus is not an INTEGER: {modulus!r}')
    if not exponent.is_integer:
        raise InvalidPublicKeyError(f'The RSAPublicKey exponent is not an INTEGER: {exponent!r}')
    if not modulus.value or not exponent.value:
        raise InvalidPublicKeyError('The RSAPublicKey modulus and exponent cannot be empty INTEGERs')

    components = PublicKeyComponents(modulus=strip_sign_padding(modulus.value), exponent=strip_sign_padding(exponent.value), algorithm=algorithm)
    log.debug('Extracted RSA public key with a %d byte modulus and exponent 0x%s', components.modulus_length, components.exponent_hex)
    return components


def _algorithm_oid(algorithm_identifier: Node) -> str | None:
    # The algorithm is informational, a missing or unusual AlgorithmIdentifier is not an error.
    if not algorithm_identifier.constructed or not algorithm_identifier.children:
        return None
    oid = algorithm_identifier.children[0]
    if oid.constructed or not oid.is_universal(UniversalTag.OBJECT_IDENTIFIER):
        return None
    try:
        return der.decode_oid(oid.value)
    except MalformedEncodingError as exc:
        raise InvalidPublicKeyError(f'The subjectPublicKeyInfo algorithm has an invalid object identifier: {exc}') from exc


def read_public_key(certificate: str | bytes | bytearray | memoryview) -> PublicKeyComponents:
    """
    Return the RSA public key components from a certificate.

    The certificate can be given as PEM text (str or bytes) or as DER bytes.
    """
    if isinstance(certificate, str) or bytes(certificate[:len(PEM_HEADER)]).startswith(b'-----BEGIN'):
        data = pem_to_der(certificate if isinstance(certificate, str) else bytes(certificate))
    else:
        data = bytes(certificate)
    root = der.decode_single(data)
    return extract_key_components(locate_public_key_info(root))


def load_public_key(path: str | PathLike[str]) -> PublicKeyComponents:
    return read_public_key(Path(path).expanduser().read_text())
