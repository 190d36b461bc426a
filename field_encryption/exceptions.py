"""
Custom exceptions for the field encryption framework.
"""


class FieldEncryptionError(Exception):
    """Base exception for field encryption errors."""
    pass


class EncryptionConfigurationError(FieldEncryptionError):
    """Raised when field encryption is misconfigured."""
    pass


class MissingSecretError(EncryptionConfigurationError):
    """Raised when no secret is available to derive the cipher key."""
    pass


class EncryptionError(FieldEncryptionError):
    """Raised when encryption fails."""
    pass


class InvalidSaltError(EncryptionError):
    """Raised when a salt generator returns a malformed salt."""
    pass


class UnsupportedFieldTypeError(EncryptionError):
    """Raised when a field value cannot be serialized for encryption."""
    pass


class DecryptionError(FieldEncryptionError):
    """Raised when decryption fails."""
    pass
