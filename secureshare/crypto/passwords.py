"""Password hashing for password-protected secrets.

Stored form is ``scrypt$<salt>$<digest>`` with base64 fields. Verification goes
through ``Scrypt.verify``, which compares in constant time.
"""

import base64
import os
from typing import Optional

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

SCHEME = "scrypt"
SALT_SIZE = 16
KEY_LENGTH = 32
# n=2**14, r=8, p=1 is the interactive-login parameter set
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


def _kdf(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)


def hash_password(password: str) -> str:
    salt = os.urandom(SALT_SIZE)
    digest = _kdf(salt).derive(password.encode("utf-8"))
    return "$".join(
        [
            SCHEME,
            base64.b64encode(salt).decode("ascii"),
            base64.b64encode(digest).decode("ascii"),
        ]
    )


def verify_password(password: Optional[str], stored: str) -> bool:
    if password is None:
        return False

    try:
        scheme, salt_b64, digest_b64 = stored.split("$")
    except ValueError:
        return False
    if scheme != SCHEME:
        return False

    salt = base64.b64decode(salt_b64)
    digest = base64.b64decode(digest_b64)
    try:
        _kdf(salt).verify(password.encode("utf-8"), digest)
        return True
    except InvalidKey:
        return False
