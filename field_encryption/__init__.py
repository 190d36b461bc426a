"""
Reversible field-level encryption for document records.

Declared fields of a document are encrypted before persistence and decrypted
after retrieval, with a marker per field recording its current state.
"""

from .backends import (
    CipherStrategy,
    AESCBCBackend,
    LegacyCTRBackend,
    get_encryption_backend,
    encrypt,
    decrypt,
    encrypt_legacy,
    decrypt_legacy,
)
from .config import FieldEncryptionConfig, FieldSlots
from .engine import (
    UpdatePatch,
    encrypt_fields,
    decrypt_fields,
    compute_update_patch,
    strip_markers,
)
from .exceptions import (
    FieldEncryptionError,
    EncryptionConfigurationError,
    MissingSecretError,
    EncryptionError,
    InvalidSaltError,
    UnsupportedFieldTypeError,
    DecryptionError,
)
from .keys import StaticSecret, SecretProvider

__all__ = [
    # Cipher
    'CipherStrategy',
    'AESCBCBackend',
    'LegacyCTRBackend',
    'get_encryption_backend',
    'encrypt',
    'decrypt',
    'encrypt_legacy',
    'decrypt_legacy',

    # Configuration
    'FieldEncryptionConfig',
    'FieldSlots',
    'StaticSecret',
    'SecretProvider',

    # Engine
    'UpdatePatch',
    'encrypt_fields',
    'decrypt_fields',
    'compute_update_patch',
    'strip_markers',

    # Exceptions
    'FieldEncryptionError',
    'EncryptionConfigurationError',
    'MissingSecretError',
    'EncryptionError',
    'InvalidSaltError',
    'UnsupportedFieldTypeError',
    'DecryptionError',
]

# Version info
__version__ = '1.0.0'
