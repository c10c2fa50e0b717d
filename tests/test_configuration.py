# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import logging

import pytest

from certbridge.certificates import read_public_key
from certbridge.configuration import LogHandler, Settings, configure_logging, default_max_depth, normalize_emitter_address
from certbridge.encoding import decode_single
from certbridge.encoding.exceptions import MalformedEncodingError


class TestSettings:

    def test_defaults(self) -> None:
        settings = Settings.from_environment({})
        assert settings == Settings()
        assert settings.max_depth == 16
        assert settings.log_level == logging.WARNING
        assert settings.emitter_chain == 10003
        assert settings.emitter_address is None

    def test_from_environment(self) -> None:
        environ = {
            'CERTBRIDGE_MAX_DEPTH': '4',
            'CERTBRIDGE_LOG_LEVEL': 'debug',
            'CERTBRIDGE_EMITTER_CHAIN': '0x2',
            'CERTBRIDGE_EMITTER_ADDRESS': ' 0x' + 20 * 'AB' + ' ',
            'UNRELATED': 'ignored',
        }
        settings = Settings.from_environment(environ)
        assert settings.max_depth == 4
        assert settings.log_level == logging.DEBUG
        assert settings.emitter_chain == 2
        assert settings.emitter_address == 24 * '0' + 20 * 'ab'
        assert Settings.from_environment({'CERTBRIDGE_LOG_LEVEL': '15'}).log_level == 15

    def test_empty_values(self) -> None:
        assert Settings.from_environment({'CERTBRIDGE_MAX_DEPTH': '', 'CERTBRIDGE_EMITTER_ADDRESS': '  '}) == Settings()

    @pytest.mark.parametrize(
        ('name', 'value', 'match'),
        [
            ('MAX_DEPTH', 'deep', 'Invalid value for CERTBRIDGE_MAX_DEPTH'),
            ('MAX_DEPTH', '0', 'must be at least 1'),
            ('LOG_LEVEL', 'chatty', 'unknown log level'),
            ('EMITTER_CHAIN', '-1', 'must be at least 0'),
            ('EMITTER_ADDRESS', '0x1234', 'must have 20 or 32 bytes, got 2'),
        ],
    )
    def test_invalid_values(self, name: str, value: str, match: str) -> None:
        with pytest.raises(ValueError, match=match):
            Settings.from_environment({f'CERTBRIDGE_{name}': value})

    def test_max_depth_is_used_by_the_decoder(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr('certbridge.encoding.der.default_max_depth', lambda: 2)
        with pytest.raises(MalformedEncodingError, match='nested deeper than the maximum of 2 levels'):
            decode_single(bytes.fromhex('3006 3004 3002 0500'))
        assert decode_single(bytes.fromhex('3004 3002 0500')).children[0].children[0].tag_number == 5

    def test_default_max_depth(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv('CERTBRIDGE_MAX_DEPTH', '3')
        monkeypatch.setenv('CERTBRIDGE_EMITTER_ADDRESS', '0x1234')
        default_max_depth.cache_clear()
        try:
            assert default_max_depth() == 3
        finally:
            default_max_depth.cache_clear()

    def test_decoder_ignores_unrelated_settings(self, monkeypatch: pytest.MonkeyPatch, certificate_pem: str) -> None:
        monkeypatch.delenv('CERTBRIDGE_MAX_DEPTH', raising=False)
        monkeypatch.setenv('CERTBRIDGE_EMITTER_ADDRESS', '0x1234')
        monkeypatch.setenv('CERTBRIDGE_LOG_LEVEL', 'chatty')
        default_max_depth.cache_clear()
        try:
            assert decode_single(b'\x02\x01\x05').value == b'\x05'
            assert read_public_key(certificate_pem).exponent_hex == '010001'
            with pytest.raises(ValueError, match='Invalid value for CERTBRIDGE_EMITTER_ADDRESS'):
                Settings.from_environment()
        finally:
            default_max_depth.cache_clear()

    def test_read_single_setting(self) -> None:
        environ = {'CERTBRIDGE_EMITTER_CHAIN': '2', 'CERTBRIDGE_EMITTER_ADDRESS': 'bad'}
        assert Settings.read('emitter_chain', environ) == 2
        assert Settings.read('max_depth', environ) == 16
        with pytest.raises(ValueError, match='Invalid value for CERTBRIDGE_EMITTER_ADDRESS'):
            Settings.read('emitter_address', environ)


class TestEmitterAddress:

    def test_normalize(self) -> None:
        assert normalize_emitter_address('0x' + 20 * '11') == 12 * '00' + 20 * '11'
        assert normalize_emitter_address(32 * 'Ff') == 32 * 'ff'
        with pytest.raises(ValueError):
            normalize_emitter_address('0xnothex')
        with pytest.raises(ValueError, match='got 33'):
            normalize_emitter_address(33 * '00')


class TestLogging:

    def test_configure_logging(self) -> None:
        logger = logging.getLogger('certbridge')
        handlers = list(logger.handlers)
        level = logger.level
        try:
            assert configure_logging(logging.INFO) is logger
            assert configure_logging(logging.DEBUG) is logger
            assert sum(isinstance(handler, LogHandler) for handler in logger.handlers) == 1
            assert logger.level == logging.DEBUG
            assert logging.getLogger('certbridge.encoding.der').getEffectiveLevel() == logging.DEBUG
        finally:
            logger.handlers[:] = handlers
            logger.setLevel(level)
