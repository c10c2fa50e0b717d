# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later


__all__ = 'DecodingError', 'MalformedEncodingError', 'SchemaMismatchError', 'InvalidPublicKeyError', 'InvalidSnapshotError', 'TruncatedMessageError'


class DecodingError(ValueError):
    """
    Base class for all the errors raised while decoding binary input.

    The ``retryable`` attribute tells the caller if fetching the same input
    again later may succeed. Only :exc:`TruncatedMessageError` is retryable,
    everything else means the input is unusable and should be discarded.

    """

    retryable: bool = False


class MalformedEncodingError(DecodingError):
    """
    Raised when a length or an offset in the encoding violates the bounds of
    the buffer, or when the children of a constructed node do not exactly
    cover its declared length.

    This is also raised for empty input and for input that is nested deeper
    than the configured limit.

    """


class SchemaMismatchError(DecodingError):
    """
    Raised when the input is a well formed encoding, but its structure does
    not match what was expected (a missing field, a wrong tag or too few
    elements in a sequence).
    """


class InvalidPublicKeyError(SchemaMismatchError):
    """
    Raised when the public key info of a certificate cannot be turned into
    the modulus and exponent of an RSA key.

    All failures in extracting the key are reported with this exception,
    the underlying error (if any) is available as ``__cause__``.

    """


class InvalidSnapshotError(SchemaMismatchError):
    """Raised when a message payload is not a valid certificate snapshot document."""


class TruncatedMessageError(DecodingError):
    """
    Raised when an attested message is shorter than the payload offset that
    is implied by its signature count.

    This is the expected state while the attestation network is still
    collecting signatures for a message, so callers should fetch the message
    again later instead of discarding it.

    """

    retryable = True

    def __init__(self, message: str, *, needed: int, available: int) -> None:
        super().__init__(message)
        self.needed = needed
        self.available = available
