import logging
import os

import keyring

from secureshare.crypto.encryption import Encryptor

KEYRING_SERVICE = "secureshare"
KEYRING_USERNAME = "master-key"
MASTER_KEY_ENV = "SECURESHARE_MASTER_KEY"

logger = logging.getLogger(__name__)


def get_or_create_master_key() -> bytes:
    env_key = os.getenv(MASTER_KEY_ENV)
    if env_key:
        try:
            return Encryptor.string_to_key(env_key)
        except Exception:
            logger.warning("%s is not valid base64, ignoring it", MASTER_KEY_ENV)

    try:
        key_string = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
        if key_string:
            return Encryptor.string_to_key(key_string)
    except Exception as e:
        logger.debug("Keyring lookup failed: %s", e)

    key = Encryptor.generate_key()

    try:
        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, Encryptor.key_to_string(key))
    except Exception:
        logger.warning(
            "Could not save master key to system keychain. "
            "Set %s to keep encrypted content readable across runs.",
            MASTER_KEY_ENV,
        )

    return key
