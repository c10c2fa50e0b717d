# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Attested cross-chain messages.

An attested message is a signed envelope with the following layout:

    +----------------------------+
    | version                  1 |
    | guardian_set_index       4 |
    | signature_count          1 |
    +----------------------------+
    | signatures    66 * count   |  guardian_index (1), r (32), s (32), recovery_id (1)
    +----------------------------+
    | timestamp                4 |
    | nonce                    4 |
    | emitter_chain            2 |
    | emitter_address         32 |
    | sequence                 8 |
    | consistency_level        1 |
    +----------------------------+
    | payload                    |  all the remaining bytes
    +----------------------------+

All integers are in network byte order. The signatures are only skipped
over, they are verified by the destination ledger, so a message that
decodes successfully is not proof that its signers are legitimate.
"""

import logging
from typing import Self

from certbridge.configuration import normalize_emitter_address, settings

from .encoding.datamodel import FixedSize, UInt8, UInt16, UInt32, UInt64, WireData
from .encoding.elements import AnnotatedStructure, CountedListElement, Element, RemainderElement
from .encoding.exceptions import MalformedEncodingError, TruncatedMessageError

__all__ = 'AttestedMessage', 'EmitterAddress', 'GuardianSignature', 'Scalar', 'extract_payload', 'payload_offset'


log = logging.getLogger(__name__)


HEADER_SIZE = 6
SIGNATURE_COUNT_OFFSET = 5
SIGNATURE_SIZE = 66
BODY_HEADER_SIZE = 51

MAX_SIGNATURE_COUNT = 2**8 - 1


class Scalar(FixedSize, size=32):
    pass


class EmitterAddress(FixedSize, size=32):
    def __repr__(self) -> str:
        return f'<{self.__class__.__qualname__}: {self.hex()}>'

    @classmethod
    def from_hex(cls, address: str) -> Self:
        """Create an emitter address from hex, left padding 20-byte EVM addresses to 32 bytes"""
        return cls(bytes.fromhex(normalize_emitter_address(address)))

    @property
    def evm_address(self) -> str:
        return '0x' + self[-20:].hex()


class GuardianSignature(AnnotatedStructure):
    guardian_index: Element[UInt8] = Element(UInt8)
    r: Element[Scalar] = Element(Scalar)
    s: Element[Scalar] = Element(Scalar)
    recovery_id: Element[UInt8] = Element(UInt8)


class AttestedMessage(AnnotatedStructure):
    version: Element[UInt8] = Element(UInt8, default=UInt8(1))
    guardian_set_index: Element[UInt32] = Element(UInt32)
    signatures: CountedListElement[GuardianSignature] = CountedListElement(GuardianSignature, count_type=UInt8, default=())

    timestamp: Element[UInt32] = Element(UInt32)
    nonce: Element[UInt32] = Element(UInt32, default=UInt32(0))
    emitter_chain: Element[UInt16] = Element(UInt16)
    emitter_address: Element[EmitterAddress] = Element(EmitterAddress)
    sequence: Element[UInt64] = Element(UInt64)
    consistency_level: Element[UInt8] = Element(UInt8, default=UInt8(1))

    payload: RemainderElement = RemainderElement(default=b'')

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        data = buffer.read() if not isinstance(buffer, bytes | bytearray | memoryview) else bytes(buffer)
        _payload_offset(data)
        try:
            return super().from_wire(data)
        except ValueError as exc:
            raise MalformedEncodingError(str(exc)) from exc

    @property
    def signature_count(self) -> int:
        return len(self.signatures)

    @property
    def body_offset(self) -> int:
        return HEADER_SIZE + self.signature_count * SIGNATURE_SIZE

    @property
    def payload_offset(self) -> int:
        return payload_offset(self.signature_count)

    @property
    def body(self) -> bytes:
        """The signed part of the message (the body header followed by the payload)"""
        return self.to_wire()[self.body_offset:]

    def is_from(self, emitter_chain: int | None = None, emitter_address: str | bytes | None = None) -> bool:
        """
        Check that the message was emitted by the given chain and address.

        The address can be given as 20 or 32 bytes, either raw or in hex. When
        omitted, the chain and the address of the trusted emitter from settings
        are used, and it is an error if no trusted emitter address is configured.
        """
        if emitter_chain is None:
            emitter_chain = settings().emitter_chain
        if emitter_address is None:
            emitter_address = settings().emitter_address
            if emitter_address is None:
                raise ValueError('No emitter address was given and CERTBRIDGE_EMITTER_ADDRESS is not set')
        if not isinstance(emitter_address, str):
            emitter_address = bytes(emitter_address).hex()
        return self.emitter_chain == emitter_chain and self.emitter_address == EmitterAddress.from_hex(emitter_address)


def payload_offset(signature_count: int) -> int:
    """Return the offset of the payload in a message that carries signature_count signatures"""
    if not 0 <= signature_count <= MAX_SIGNATURE_COUNT:
        raise ValueError(f'The signature count must be between 0 and {MAX_SIGNATURE_COUNT}: {signature_count!r}')
    return HEADER_SIZE + signature_count * SIGNATURE_SIZE + BODY_HEADER_SIZE


def _payload_offset(data: bytes | bytearray | memoryview) -> int:
    available = len(data)
    if available < HEADER_SIZE:
        raise MalformedEncodingError(f'The attested message is too short to contain a header ({available} < {HEADER_SIZE} bytes)')
    signature_count = data[SIGNATURE_COUNT_OFFSET]
    offset = payload_offset(signature_count)
    if available < offset:
        log.debug('Attested message with %d signatures is truncated (%d of %d bytes)', signature_count, available, offset)
        raise TruncatedMessageError(f'The attested message with {signature_count} signatures needs at least {offset} bytes, got {available}', needed=offset, available=available)
    return offset


def extract_payload(buffer: bytes | bytearray | memoryview) -> bytes:
    """
    Return the payload of an attested message.

    This is only a structural offset calculation, the signatures that are
    skipped are not verified.
    """
    return bytes(buffer[_payload_offset(buffer):])
