"""Provider key pool: encrypted credential storage, selection and health tracking."""

from study_summarizer.keys.models import Credential, MaskedCredential, SelectedCredential
from study_summarizer.keys.pool import CredentialNotFound, KeyPool, NoKeyAvailable
from study_summarizer.keys.storage import CredentialStorage, CredentialStore

__all__ = [
    "Credential",
    "CredentialNotFound",
    "CredentialStorage",
    "CredentialStore",
    "KeyPool",
    "MaskedCredential",
    "NoKeyAvailable",
    "SelectedCredential",
]
