"""
Django integration for encrypted document fields.

A model keeps its record in a ``JSONField`` and declares which keys of that
document are encrypted::

    class Post(models.Model):
        document = models.JSONField(default=dict)

        encryption = FieldEncryption(
            fields=['message', 'attachments'],
            secret=lambda: settings.POST_SECRET,
        )

Documents are encrypted before save and decrypted when instances are loaded.
Partial updates go through :meth:`FieldEncryption.update` so that the stored
document never receives plaintext.
"""

import logging
from typing import Any, MutableMapping

from django.db import transaction
from django.db.models.signals import post_init, pre_save

from .config import FieldEncryptionConfig
from .engine import UpdatePatch, compute_update_patch, decrypt_fields, encrypt_fields, strip_markers
from .exceptions import EncryptionConfigurationError

logger = logging.getLogger(__name__)


class BoundFieldEncryption:
    """Field encryption operations for one model instance."""

    def __init__(self, encryption: 'FieldEncryption', instance):
        self.encryption = encryption
        self.instance = instance

    @property
    def document(self):
        return getattr(self.instance, self.encryption.document_field)

    def encrypt(self):
        """Encrypt the instance's document in place."""
        return self.encryption.encrypt_document(self.document)

    def decrypt(self):
        """Decrypt the instance's document in place."""
        return self.encryption.decrypt_document(self.document)

    def strip_markers(self):
        """Remove encryption markers and side data from the instance's document."""
        return self.encryption.strip_document_markers(self.document)


class FieldEncryption:
    """
    Encrypts declared keys of a model's JSON document.

    Accepts the options of :meth:`FieldEncryptionConfig.from_options`; they
    are validated when the model class is created.
    """

    def __init__(self, fields=None, secret=None, document_field: str = 'document', **options):
        self.config = FieldEncryptionConfig.from_options(secret=secret, fields=fields, **options)
        self.document_field = document_field
        self.model = None
        self.name = None

    def contribute_to_class(self, cls, name, **kwargs):
        """
        Attach to the model class and connect the lifecycle signals.
        """
        if cls._meta.abstract:
            raise EncryptionConfigurationError(
                f"FieldEncryption must be declared on a concrete model, not {cls.__name__}"
            )

        self.model = cls
        self.name = name
        setattr(cls, name, self)

        uid = f"field_encryption:{cls._meta.label}.{name}"
        pre_save.connect(self._encrypt_before_save, sender=cls, weak=False, dispatch_uid=f"{uid}:pre_save")
        post_init.connect(self._decrypt_after_load, sender=cls, weak=False, dispatch_uid=f"{uid}:post_init")

        logger.debug(
            f"Registered field encryption for {cls._meta.label}.{self.document_field}: {list(self.config.fields)}"
        )

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return BoundFieldEncryption(self, instance)

    # Signal handlers

    def _encrypt_before_save(self, sender, instance, raw=False, **kwargs):
        # Fixtures are stored exactly as serialized.
        if raw:
            return
        self.encrypt_document(instance.__dict__.get(self.document_field))

    def _decrypt_after_load(self, sender, instance, **kwargs):
        # A deferred document is absent from __dict__ and is left alone.
        self.decrypt_document(instance.__dict__.get(self.document_field))

    # Document operations

    def encrypt_document(self, doc: MutableMapping) -> MutableMapping:
        return encrypt_fields(doc, self.config)

    def decrypt_document(self, doc: MutableMapping) -> MutableMapping:
        return decrypt_fields(doc, self.config)

    def strip_document_markers(self, doc: MutableMapping) -> MutableMapping:
        return strip_markers(doc, self.config)

    def compute_update_patch(self, changes: MutableMapping) -> UpdatePatch:
        return compute_update_patch(changes, self.config)

    def update(self, queryset, changes: MutableMapping[str, Any]) -> int:
        """
        Apply a partial document update to every row of ``queryset``.

        Declared fields in ``changes`` are encrypted before anything is
        written; other keys are stored as given. Rows are locked and updated
        in a single transaction.

        Returns:
            Number of rows updated
        """
        patch = self.compute_update_patch(changes)
        values = patch.as_update(changes)
        manager = queryset.model._base_manager.using(queryset.db)

        updated = 0
        with transaction.atomic(using=queryset.db):
            rows = queryset.select_for_update().values_list('pk', self.document_field)
            for pk, document in rows:
                document = dict(document or {})
                for key in patch.unset:
                    document.pop(key, None)
                document.update(values)
                updated += manager.filter(pk=pk).update(**{self.document_field: document})

        logger.info(f"Updated {updated} {queryset.model._meta.label} document(s) with {len(patch.set)} encrypted key(s)")
        return updated
