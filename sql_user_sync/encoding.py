"""
Credential encoding.

Passwords are compared against the backend by value, so the exact transform
the backend applies when storing a password must be applied to a supplied
password before it is compared.
"""

import hashlib
import logging
from typing import Callable, Dict

from sql_user_sync.config import ConfigurationError

logger = logging.getLogger(__name__)


def _mysql_native(password: bytes) -> str:
    # Same value as MySQL's PASSWORD() for mysql_native_password accounts
    digest = hashlib.sha1(hashlib.sha1(password).digest()).hexdigest()
    return '*' + digest.upper()


def _sha1(password: bytes) -> str:
    return hashlib.sha1(password).hexdigest()


def _sha256(password: bytes) -> str:
    return hashlib.sha256(password).hexdigest()


# 'plain' leaves the password as is, the backend encodes it on its side
PLAIN = 'plain'

ENCODERS: Dict[str, Callable[[bytes], str]] = {
    'mysql-native': _mysql_native,
    'sha1': _sha1,
    'sha256': _sha256,
}


def encode_password(password: str, encoding: str = 'mysql-native', charset: str = 'utf-8') -> str:
    """
    Encode a password the way the backend stores it.

    Args:
        password: Clear text password
        encoding: Name of the encoder, one of ``ENCODERS``
        charset: Character set used to turn the password into bytes

    Returns:
        Encoded password

    Raises:
        ConfigurationError: If the encoding or charset is unknown
    """
    encoding = encoding.lower()
    if encoding == PLAIN:
        return password

    encoder = ENCODERS.get(encoding)
    if encoder is None:
        raise ConfigurationError(f"Unknown password encoding: {encoding}")

    try:
        raw = password.encode(charset)
    except LookupError:
        raise ConfigurationError(f"Unknown charset: {charset}")

    return encoder(raw)
