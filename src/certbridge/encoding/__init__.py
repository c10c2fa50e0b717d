# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from .der import Node, TagClass, UniversalTag, decode, decode_single
from .exceptions import DecodingError, InvalidPublicKeyError, InvalidSnapshotError, MalformedEncodingError, SchemaMismatchError, TruncatedMessageError

__all__ = (  # noqa: RUF022
    'Node',
    'TagClass',
    'UniversalTag',
    'decode',
    'decode_single',

    'DecodingError',
    'InvalidPublicKeyError',
    'InvalidSnapshotError',
    'MalformedEncodingError',
    'SchemaMismatchError',
    'TruncatedMessageError',
)
