"""Security module for the study summarizer.

Provides at-rest encryption for the provider credentials held in the key store.
"""

from study_summarizer.security.cipher import (
    ConfigurationError,
    CredentialCipher,
    DecryptionError,
    get_cipher,
)

__all__ = ["ConfigurationError", "CredentialCipher", "DecryptionError", "get_cipher"]
