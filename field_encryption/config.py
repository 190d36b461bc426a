"""
Resolution of field encryption options.

Options are validated once, when a field set is registered, and the resulting
configuration is immutable. Defaults can be supplied through Django settings::

    FIELD_ENCRYPTION_SECRET = env('FIELD_ENCRYPTION_SECRET')
    FIELD_ENCRYPTION_ENCRYPT_NULL = True
    FIELD_ENCRYPTION_NOTIFY_DECRYPT_FAILS = True
    FIELD_ENCRYPTION_ENCRYPT_EACH_ARRAY_ITEM = False
    FIELD_ENCRYPTION_USE_AES_256_CTR = False
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

from django.conf import settings

from .backends import CipherStrategy, SaltGenerator, get_encryption_backend, random_salt
from .exceptions import EncryptionConfigurationError
from .keys import SecretProvider, StaticSecret, derive_key, secret_source

logger = logging.getLogger(__name__)

MARKER_PREFIX = '__enc_'
SIDE_DATA_SUFFIX = '_d'
PATH_SEPARATOR = '.'


def _setting(name: str, default=None):
    # The library is usable without a configured Django project.
    if not settings.configured:
        return default
    return getattr(settings, name, default)


@dataclass(frozen=True)
class FieldSlots:
    """
    Document keys managed for one declared field.

    A dotted field such as ``author.password`` lives in the sub-document found
    at ``path``; its marker and side data sit next to it in that sub-document.
    """

    name: str
    marker: str
    side_data: str
    path: Tuple[str, ...] = ()

    @classmethod
    def for_field(cls, field: str) -> 'FieldSlots':
        *path, name = field.split(PATH_SEPARATOR)
        marker = f"{MARKER_PREFIX}{name}"
        return cls(name=name, marker=marker, side_data=f"{marker}{SIDE_DATA_SUFFIX}", path=tuple(path))

    @property
    def field(self) -> str:
        return PATH_SEPARATOR.join(self.path + (self.name,))


@dataclass(frozen=True)
class FieldEncryptionConfig:
    """Resolved, immutable configuration for one set of encrypted fields."""

    secret: Union[StaticSecret, SecretProvider]
    slots: Tuple[FieldSlots, ...] = ()
    strategy: CipherStrategy = CipherStrategy.AES_256_CBC
    salt_generator: SaltGenerator = random_salt
    encrypt_null: bool = True
    notify_decrypt_fails: bool = True
    encrypt_each_array_item: bool = False

    @classmethod
    def from_options(cls,
                     secret=None,
                     fields: Optional[Iterable[str]] = None,
                     salt_generator: Optional[SaltGenerator] = None,
                     use_aes_256_ctr: Optional[bool] = None,
                     encrypt_null: Optional[bool] = None,
                     notify_decrypt_fails: Optional[bool] = None,
                     encrypt_each_array_item: Optional[bool] = None) -> 'FieldEncryptionConfig':
        """
        Validate registration options and build a configuration.

        Args:
            secret: String secret or zero-argument callable returning one.
                Falls back to ``settings.FIELD_ENCRYPTION_SECRET``.
            fields: Names of the document fields to protect. A dotted name
                reaches into sub-documents and lists of sub-documents.
            salt_generator: Callable receiving the derived key and returning
                a 16-byte salt/IV
            use_aes_256_ctr: Read and write with the deprecated CTR scheme
            encrypt_null: Encrypt ``None`` values instead of leaving them
            notify_decrypt_fails: Raise on decryption failure instead of
                resolving the field to an empty value
            encrypt_each_array_item: Encrypt list items one by one

        Raises:
            MissingSecretError: If no secret is configured
            EncryptionConfigurationError: If any option is invalid
        """
        if secret is None:
            secret = _setting('FIELD_ENCRYPTION_SECRET')
        source = secret_source(secret)

        names = list(fields or [])
        for name in names:
            if not isinstance(name, str) or not all(name.split(PATH_SEPARATOR)):
                raise EncryptionConfigurationError(f"Field names must be non-empty strings, got {name!r}")
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise EncryptionConfigurationError(f"Fields declared more than once: {', '.join(duplicates)}")
        for name in names:
            # A field inside another encrypted field would be hidden by its parent.
            parents = [other for other in names if name.startswith(other + PATH_SEPARATOR)]
            if parents:
                raise EncryptionConfigurationError(f"Field {name} is nested in encrypted field {parents[0]}")

        if salt_generator is None:
            salt_generator = random_salt
        elif not callable(salt_generator):
            raise EncryptionConfigurationError("salt_generator must be callable")

        flags = {
            'use_aes_256_ctr': (use_aes_256_ctr, 'FIELD_ENCRYPTION_USE_AES_256_CTR', False),
            'encrypt_null': (encrypt_null, 'FIELD_ENCRYPTION_ENCRYPT_NULL', True),
            'notify_decrypt_fails': (notify_decrypt_fails, 'FIELD_ENCRYPTION_NOTIFY_DECRYPT_FAILS', True),
            'encrypt_each_array_item': (
                encrypt_each_array_item, 'FIELD_ENCRYPTION_ENCRYPT_EACH_ARRAY_ITEM', False
            ),
        }
        resolved = {}
        for option, (value, setting_name, default) in flags.items():
            if value is None:
                value = _setting(setting_name, default)
            if not isinstance(value, bool):
                raise EncryptionConfigurationError(f"{option} must be a boolean, got {value!r}")
            resolved[option] = value

        strategy = CipherStrategy.AES_256_CTR if resolved['use_aes_256_ctr'] else CipherStrategy.AES_256_CBC

        config = cls(
            secret=source,
            slots=tuple(FieldSlots.for_field(name) for name in names),
            strategy=strategy,
            salt_generator=salt_generator,
            encrypt_null=resolved['encrypt_null'],
            notify_decrypt_fails=resolved['notify_decrypt_fails'],
            encrypt_each_array_item=resolved['encrypt_each_array_item'],
        )
        logger.debug(f"Resolved field encryption for {names} using {strategy.value}")
        return config

    @property
    def backend(self):
        return get_encryption_backend(self.strategy)

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(slot.field for slot in self.slots)

    def resolve_key(self) -> str:
        """Resolve the secret and derive the cipher key for one operation."""
        return derive_key(self.secret.resolve(), self.strategy)
