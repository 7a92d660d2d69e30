"""
AES-256-GCM key wrapping.

* :class:`KeyWrapper` wraps arbitrary secret bytes under a fresh one-time key
  (used to carry a patient's private key to a doctor) and seals values at rest
  under the application-wide encryption key.
* :func:`protect_with_password` / :func:`unprotect_with_password` keep a
  private key on disk behind a password (scrypt -> AES-GCM).
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from errors import ConfigurationError, IntegrityError

logger = logging.getLogger(__name__)

KEY_SIZE = 32   # AES-256
IV_SIZE = 12    # 96-bit GCM nonce
TAG_SIZE = 16
SALT_SIZE = 16


# ----- symmetric (AES-GCM) -----
def aesgcm_encrypt(key: bytes, plaintext: bytes, aad: Optional[bytes] = None):
    aes = AESGCM(key)
    nonce = os.urandom(IV_SIZE)
    ct = aes.encrypt(nonce, plaintext, aad)
    return nonce, ct

def aesgcm_decrypt(key: bytes, nonce: bytes, ciphertext: bytes, aad: Optional[bytes] = None) -> bytes:
    try:
        aes = AESGCM(key)
        return aes.decrypt(nonce, ciphertext, aad)
    except (InvalidTag, ValueError) as e:
        # ValueError covers a key or nonce of the wrong length
        raise IntegrityError("authenticated decryption failed") from e

def scrypt_kdf(passphrase: str, salt: bytes, length: int = KEY_SIZE) -> bytes:
    kdf = Scrypt(salt=salt, length=length, n=2**14, r=8, p=1)
    return kdf.derive(passphrase.encode("utf-8"))


@dataclass(frozen=True)
class WrappedSecret:
    key: bytes
    iv: bytes
    ciphertext: bytes
    auth_tag: bytes

    def __repr__(self):
        return f"WrappedSecret(ciphertext_len={len(self.ciphertext)}, key=<redacted>)"


class KeyWrapper:
    def __init__(self, master_key: Optional[bytes] = None):
        if master_key is not None and len(master_key) != KEY_SIZE:
            raise ConfigurationError("master encryption key must be 32 bytes")
        self._master_key = master_key

    def wrap(self, secret: bytes) -> WrappedSecret:
        """Encrypt ``secret`` under a fresh random key and nonce."""
        key = AESGCM.generate_key(bit_length=256)
        iv, sealed = aesgcm_encrypt(key, secret)
        logger.debug("AES-256-GCM wrap of %d bytes", len(secret))
        return WrappedSecret(
            key=key, iv=iv, ciphertext=sealed[:-TAG_SIZE], auth_tag=sealed[-TAG_SIZE:]
        )

    def unwrap(self, iv: bytes, ciphertext: bytes, auth_tag: bytes, key: bytes) -> bytes:
        if len(auth_tag) != TAG_SIZE:
            raise IntegrityError("authentication tag has the wrong length")
        return aesgcm_decrypt(key, iv, ciphertext + auth_tag)

    # ----- at-rest sealing under the configured application key -----
    def _require_master_key(self) -> bytes:
        if self._master_key is None:
            raise ConfigurationError("ENCRYPTION_KEY not configured")
        return self._master_key

    def seal(self, plaintext: bytes) -> str:
        """Return ``base64(iv || tag || ciphertext)``."""
        iv, sealed = aesgcm_encrypt(self._require_master_key(), plaintext)
        ct, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(iv + tag + ct).decode("ascii")

    def open_sealed(self, token: str) -> bytes:
        key = self._require_master_key()
        try:
            raw = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError) as e:
            raise IntegrityError("sealed value is not valid base64") from e
        if len(raw) < IV_SIZE + TAG_SIZE:
            raise IntegrityError("sealed value is truncated")
        iv, tag, ct = raw[:IV_SIZE], raw[IV_SIZE:IV_SIZE + TAG_SIZE], raw[IV_SIZE + TAG_SIZE:]
        return aesgcm_decrypt(key, iv, ct + tag)


# Protect a private key with its owner's password (scrypt -> AES-GCM)
def protect_with_password(secret: bytes, password: str):
    salt = os.urandom(SALT_SIZE)
    k = scrypt_kdf(password, salt)
    nonce, ct = aesgcm_encrypt(k, secret)
    return salt, nonce, ct

def unprotect_with_password(enc_secret: bytes, nonce: bytes, salt: bytes, password: str) -> bytes:
    k = scrypt_kdf(password, salt)
    return aesgcm_decrypt(k, nonce, enc_secret)
