"""
Secret sources and cipher key derivation.
"""

import hashlib
import logging
from typing import Callable

from .backends import KEY_LENGTH, CipherStrategy
from .exceptions import EncryptionConfigurationError, MissingSecretError

logger = logging.getLogger(__name__)


class StaticSecret:
    """A secret fixed at registration time."""

    def __init__(self, value: str):
        self.value = value

    def resolve(self) -> str:
        return self.value

    def __repr__(self):
        return "<StaticSecret ***>"


class SecretProvider:
    """
    A secret produced by a zero-argument callable.

    The callable is invoked on every operation, so rotated or derived secrets
    take effect without re-registering the field set.
    """

    def __init__(self, provider: Callable[[], str]):
        self.provider = provider

    def resolve(self) -> str:
        value = self.provider()
        if not value:
            raise MissingSecretError("Secret provider returned an empty secret")
        if not isinstance(value, str):
            raise EncryptionConfigurationError(
                f"Secret provider must return a string, got {type(value).__name__}"
            )
        return value

    def __repr__(self):
        return f"<SecretProvider {getattr(self.provider, '__name__', 'callable')}>"


def secret_source(secret):
    """
    Wrap a configured secret in the matching source type.

    Raises:
        MissingSecretError: If no secret was supplied
        EncryptionConfigurationError: If the secret is neither a string nor a callable
    """
    if isinstance(secret, (StaticSecret, SecretProvider)):
        return secret
    if callable(secret):
        return SecretProvider(secret)
    if not secret:
        raise MissingSecretError("missing required secret")
    if not isinstance(secret, str):
        raise EncryptionConfigurationError(
            f"Secret must be a string or a callable, got {type(secret).__name__}"
        )
    return StaticSecret(secret)


def derive_key(secret: str, strategy: CipherStrategy = CipherStrategy.AES_256_CBC) -> str:
    """
    Derive the cipher key for a secret.

    The current scheme uses the first 32 characters of the SHA-256 hex digest
    as AES-256 key material. The legacy scheme feeds the secret directly to its
    own key derivation.
    """
    if strategy == CipherStrategy.AES_256_CTR:
        return secret
    return hashlib.sha256(secret.encode('utf-8')).hexdigest()[:KEY_LENGTH]
