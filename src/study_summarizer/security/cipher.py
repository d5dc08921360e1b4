"""AES-256-GCM encryption of provider credentials at rest.

Each stored blob is the base64 encoding of::

    salt (32 bytes) | IV (16 bytes) | auth tag (16 bytes) | ciphertext

The symmetric key is a single SHA-256 pass over the master secret. The salt is
random per blob and kept in the layout for future key derivation. It is
inert today: it takes no part in the key and is not authenticated.
"""

import base64
import binascii
import hashlib
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from study_summarizer.config import get_settings
from study_summarizer.logging import get_logger

log = get_logger("study_summarizer.security.cipher")

# AES-256-GCM parameters
KEY_SIZE = 32  # 256-bit key
SALT_SIZE = 32
IV_SIZE = 16
TAG_SIZE = 16
HEADER_SIZE = SALT_SIZE + IV_SIZE + TAG_SIZE


class ConfigurationError(Exception):
    """Raised when the master secret is not configured."""


class DecryptionError(ValueError):
    """Raised when a stored blob cannot be decoded or authenticated."""

    def __init__(self, message: str, credential_id: str | None = None) -> None:
        super().__init__(message)
        self.credential_id = credential_id


def derive_key(master_secret: str) -> bytes:
    """Derive the 256-bit cipher key from the master secret."""
    return hashlib.sha256(master_secret.encode("utf-8")).digest()


class CredentialCipher:
    """Encrypts and decrypts provider credentials.

    The master secret is resolved on first use, either from the constructor
    argument or from ``Settings.encryption_key``. While it is missing every
    operation raises :class:`ConfigurationError`.
    """

    def __init__(self, master_secret: str | None = None) -> None:
        self._master_secret = master_secret
        self._aesgcm: AESGCM | None = None

    def _get_aesgcm(self) -> AESGCM:
        if self._aesgcm is None:
            secret = self._master_secret
            if secret is None:
                configured = get_settings().encryption_key
                secret = configured.get_secret_value() if configured else None
            if not secret:
                raise ConfigurationError("ENCRYPTION_KEY environment variable is not set")
            self._aesgcm = AESGCM(derive_key(secret))
        return self._aesgcm

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a credential.

        Args:
            plaintext: The secret to encrypt.

        Returns:
            Base64 text of salt + IV + tag + ciphertext. A fresh salt and IV
            are drawn for every call, so equal inputs give different blobs.

        Raises:
            ConfigurationError: If no master secret is configured.
        """
        aesgcm = self._get_aesgcm()
        salt = os.urandom(SALT_SIZE)
        iv = os.urandom(IV_SIZE)
        sealed = aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        # cryptography appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """Decrypt a blob produced by :meth:`encrypt`.

        Raises:
            ConfigurationError: If no master secret is configured.
            DecryptionError: If the blob is malformed, truncated, tampered
                with, or was encrypted under a different key.
        """
        aesgcm = self._get_aesgcm()
        try:
            combined = base64.b64decode(blob.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise DecryptionError(f"Credential blob is not valid base64: {e}") from e

        if len(combined) < HEADER_SIZE:
            raise DecryptionError(
                f"Credential blob too short: {len(combined)} bytes, need at least {HEADER_SIZE}"
            )

        iv = combined[SALT_SIZE : SALT_SIZE + IV_SIZE]
        tag = combined[SALT_SIZE + IV_SIZE : HEADER_SIZE]
        ciphertext = combined[HEADER_SIZE:]

        try:
            plaintext = aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            log.warning("credential_decryption_failed", reason="authentication tag mismatch")
            raise DecryptionError("Credential authentication failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted credential is not valid UTF-8") from e


@lru_cache
def get_cipher() -> CredentialCipher:
    """Get the process-wide cipher keyed from settings."""
    return CredentialCipher()
