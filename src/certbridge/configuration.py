# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Settings that are read from environment variables, and the logging setup.

    CERTBRIDGE_MAX_DEPTH         maximum nesting depth accepted by the DER decoder (default 16)
    CERTBRIDGE_LOG_LEVEL         level name or number for the certbridge logger (default WARNING)
    CERTBRIDGE_EMITTER_CHAIN     chain id of the trusted message emitter (default 10003)
    CERTBRIDGE_EMITTER_ADDRESS   address of the trusted message emitter (20 or 32 bytes in hex)
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from functools import cache
from typing import ClassVar, Self

__all__ = 'Settings', 'settings', 'default_max_depth', 'configure_logging', 'normalize_emitter_address'


ENVIRONMENT_PREFIX = 'CERTBRIDGE_'

DEFAULT_MAX_DEPTH = 16
DEFAULT_LOG_LEVEL = logging.WARNING
DEFAULT_EMITTER_CHAIN = 10003  # Arbitrum Sepolia

EMITTER_ADDRESS_SIZE = 32
EVM_ADDRESS_SIZE = 20


def normalize_emitter_address(address: str) -> str:
    """Return the emitter address as 64 lowercase hex digits, left padding 20-byte EVM addresses with zeros"""
    digits = address.strip().lower().removeprefix('0x')
    data = bytes.fromhex(digits)
    if len(data) not in {EVM_ADDRESS_SIZE, EMITTER_ADDRESS_SIZE}:
        raise ValueError(f'An emitter address must have {EVM_ADDRESS_SIZE} or {EMITTER_ADDRESS_SIZE} bytes, got {len(data)}')
    return data.rjust(EMITTER_ADDRESS_SIZE, b'\x00').hex()


class EnvironmentVariableSetting[T]:
    def __init__(self, name: str, default: T) -> None:
        self.key = f'{ENVIRONMENT_PREFIX}{name}'
        self.default = default

    def read(self, environ: Mapping[str, str]) -> T:
        try:
            value = environ[self.key]
        except KeyError:
            return self.default
        if not value.strip():
            return self.default
        try:
            return self.parse(value.strip())
        except ValueError as exc:
            raise ValueError(f'Invalid value for {self.key}: {value!r} ({exc})') from exc

    def parse(self, value: str) -> T:
        raise NotImplementedError


class EVInt(EnvironmentVariableSetting[int]):
    def __init__(self, name: str, default: int, *, minimum: int = 0) -> None:
        super().__init__(name, default)
        self.minimum = minimum

    def parse(self, value: str) -> int:
        number = int(value, 0)
        if number < self.minimum:
            raise ValueError(f'must be at least {self.minimum}')
        return number


class EVLogLevel(EnvironmentVariableSetting[int]):
    def parse(self, value: str) -> int:
        if value.isdigit():
            return int(value)
        try:
            return logging.getLevelNamesMapping()[value.upper()]
        except KeyError:
            raise ValueError('unknown log level') from None


class EVEmitterAddress(EnvironmentVariableSetting[str | None]):
    def parse(self, value: str) -> str:
        return normalize_emitter_address(value)


@dataclass(frozen=True, kw_only=True)
class Settings:
    max_depth: int = DEFAULT_MAX_DEPTH
    log_level: int = DEFAULT_LOG_LEVEL
    emitter_chain: int = DEFAULT_EMITTER_CHAIN
    emitter_address: str | None = None

    _variables_: ClassVar[dict[str, EnvironmentVariableSetting]] = {
        'max_depth': EVInt('MAX_DEPTH', DEFAULT_MAX_DEPTH, minimum=1),
        'log_level': EVLogLevel('LOG_LEVEL', DEFAULT_LOG_LEVEL),
        'emitter_chain': EVInt('EMITTER_CHAIN', DEFAULT_EMITTER_CHAIN),
        'emitter_address': EVEmitterAddress('EMITTER_ADDRESS', None),
    }

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> Self:
        if environ is None:
            environ = os.environ
        return cls(**{name: variable.read(environ) for name, variable in cls._variables_.items()})

    @classmethod
    def read(cls, name: str, environ: Mapping[str, str] | None = None) -> object:
        """Read a single setting from the environment, ignoring all the other variables"""
        return cls._variables_[name].read(os.environ if environ is None else environ)


@cache
def settings() -> Settings:
    """Return the process wide settings (read from the environment on first use)"""
    return Settings.from_environment()


@cache
def default_max_depth() -> int:
    """Return the nesting limit of the DER decoder (only CERTBRIDGE_MAX_DEPTH is read)"""
    return Settings.read('max_depth')  # type: ignore[return-value]


class LogHandler(logging.StreamHandler):
    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(logging.Formatter('({asctime}) {levelname} in {name}: {message}', style='{', datefmt='%H:%M:%S'))


def configure_logging(level: int | None = None) -> logging.Logger:
    """Attach a stream handler to the certbridge logger (only once) and set its level"""
    logger = logging.getLogger('certbridge')
    if not any(isinstance(handler, LogHandler) for handler in logger.handlers):
        logger.addHandler(LogHandler())
    logger.setLevel(settings().log_level if level is None else level)
    return logger
