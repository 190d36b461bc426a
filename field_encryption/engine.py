"""
Field transform engine.

Encrypts and decrypts the declared fields of a document (any mutable mapping)
and tracks each field's state in a marker slot:

* marker absent: never touched
* marker ``True``: encrypted
* marker ``False``: decrypted

String values are replaced in place, so a fixed salt keeps them searchable by
equality. Any other value is serialized to JSON, removed from the document and
stored encrypted in the field's side-data slot.

The functions here hold no state between calls; the document is only mutated
for the duration of a call.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, MutableMapping

from .config import FieldEncryptionConfig, FieldSlots
from .exceptions import DecryptionError
from .utils import deserialize_value, serialize_value

logger = logging.getLogger(__name__)


@dataclass
class UpdatePatch:
    """
    Encrypted form of a partial update.

    ``set`` holds the document keys to assign, ``unset`` the keys to remove.
    """

    set: Dict[str, Any] = field(default_factory=dict)
    unset: List[str] = field(default_factory=list)

    def __bool__(self):
        return bool(self.set or self.unset)

    def apply(self, doc: MutableMapping) -> MutableMapping:
        """Apply the patch to a stored document in place."""
        for key in self.unset:
            doc.pop(key, None)
        doc.update(self.set)
        return doc

    def as_update(self, changes: MutableMapping) -> Dict[str, Any]:
        """Return ``changes`` with the encrypted fields substituted."""
        update = {key: value for key, value in changes.items() if key not in self.unset}
        update.update(self.set)
        return update


def _encrypt_value(value: Any, key: str, config: FieldEncryptionConfig) -> str:
    return config.backend.encrypt(value, key, config.salt_generator)


def _encrypt_structured(value: Any, key: str, config: FieldEncryptionConfig):
    if config.encrypt_each_array_item and isinstance(value, (list, tuple)):
        return [_encrypt_value(serialize_value(item), key, config) for item in value]
    return _encrypt_value(serialize_value(value), key, config)


def _is_eligible(value: Any, config: FieldEncryptionConfig) -> bool:
    return value is not None or config.encrypt_null


def _targets(doc: MutableMapping, path) -> List[MutableMapping]:
    """Return the sub-documents found at ``path``, expanding lists along the way."""
    targets = [doc]
    for key in path:
        found = []
        for target in targets:
            value = target.get(key)
            if isinstance(value, MutableMapping):
                found.append(value)
            elif isinstance(value, list):
                found.extend(item for item in value if isinstance(item, MutableMapping))
        targets = found
    return targets


def _encrypt_slot(target: MutableMapping, slots: FieldSlots, key: str, config: FieldEncryptionConfig):
    if target.get(slots.marker) or slots.name not in target:
        return

    value = target[slots.name]
    if not _is_eligible(value, config):
        return

    if isinstance(value, str):
        target[slots.name] = _encrypt_value(value, key, config)
    else:
        target[slots.side_data] = _encrypt_structured(value, key, config)
        del target[slots.name]

    target[slots.marker] = True


def encrypt_fields(doc: MutableMapping, config: FieldEncryptionConfig) -> MutableMapping:
    """
    Encrypt the declared fields of a document in place.

    Fields already marked as encrypted are left alone, so calling this more
    than once before a decrypt is a no-op. A ``None`` value is left untouched,
    with no marker, when ``encrypt_null`` is disabled.

    Raises:
        InvalidSaltError: If the salt generator returns a malformed salt
        UnsupportedFieldTypeError: If a structured value cannot be serialized
    """
    if doc is None or not config.slots:
        return doc

    key = config.resolve_key()

    for slots in config.slots:
        for target in _targets(doc, slots.path):
            _encrypt_slot(target, slots, key, config)

    return doc


def _decrypt_side_data(data: Any, key: str, slots: FieldSlots, config: FieldEncryptionConfig) -> Any:
    notify = config.notify_decrypt_fails
    items = data if isinstance(data, list) else [data]

    restored = []
    for item in items:
        if not isinstance(item, str):
            if notify:
                raise DecryptionError(f"Side data for {slots.field} is not an encoded string")
            logger.warning(f"Suppressed malformed side data for {slots.field}")
            restored.append(None)
            continue
        text = config.backend.decrypt(item, key, notify_on_failure=notify)
        try:
            restored.append(deserialize_value(text))
        except ValueError as e:
            if notify:
                logger.error(f"Decrypted data for {slots.field} is not valid JSON")
                raise DecryptionError(f"Failed to restore {slots.field}: {str(e)}") from e
            logger.warning(f"Suppressed invalid decrypted data for {slots.field}")
            restored.append(None)

    if isinstance(data, list):
        return restored
    return restored[0]


def _decrypt_value(value: Any, key: str, slots: FieldSlots, config: FieldEncryptionConfig) -> str:
    if not isinstance(value, str):
        if config.notify_decrypt_fails:
            raise DecryptionError(f"Encrypted value for {slots.field} is not an encoded string")
        logger.warning(f"Suppressed malformed encrypted value for {slots.field}")
        return ''
    return config.backend.decrypt(value, key, notify_on_failure=config.notify_decrypt_fails)


def decrypt_fields(doc: MutableMapping, config: FieldEncryptionConfig) -> MutableMapping:
    """
    Decrypt the declared fields of a document in place.

    Only fields marked as encrypted are touched. A field that was excluded from
    a partial read (no value and no side data) keeps its marker.

    Raises:
        DecryptionError: If a value cannot be decrypted and
            ``notify_decrypt_fails`` is enabled
    """
    if doc is None or not config.slots:
        return doc

    key = None

    for slots in config.slots:
        for target in _targets(doc, slots.path):
            if not target.get(slots.marker):
                continue

            # An emptied side-data slot is '', while an encrypted empty list is [].
            side_data = target.get(slots.side_data)
            if side_data is not None and side_data != '':
                key = key or config.resolve_key()
                target[slots.name] = _decrypt_side_data(side_data, key, slots, config)
                target[slots.side_data] = ''
                target[slots.marker] = False

            elif target.get(slots.name) is not None:
                key = key or config.resolve_key()
                target[slots.name] = _decrypt_value(target[slots.name], key, slots, config)
                target[slots.marker] = False

    return doc


def compute_update_patch(changes: MutableMapping, config: FieldEncryptionConfig) -> UpdatePatch:
    """
    Compute the encrypted form of a partial update.

    Declared fields present in ``changes`` are encrypted the same way
    :func:`encrypt_fields` would encrypt them, unless the update already marks
    them as encrypted. Slots left over from a previous value of the field are
    listed in ``unset``. ``changes`` itself is not modified.

    A sub-document holding dotted fields is replaced as a whole, so it is
    copied and encrypted like a stored document.
    """
    patch = UpdatePatch()
    if not changes or not config.slots:
        return patch

    key = None

    for slots in config.slots:
        if slots.path:
            top = slots.path[0]
            if top not in changes:
                continue
            if top not in patch.set:
                patch.set[top] = copy.deepcopy(changes[top])
            key = key or config.resolve_key()
            holder = {top: patch.set[top]}
            for target in _targets(holder, slots.path):
                _encrypt_slot(target, slots, key, config)
            continue

        if slots.name not in changes or changes.get(slots.marker):
            continue

        value = changes[slots.name]
        if not _is_eligible(value, config):
            # The stored field returns to the never-encrypted state.
            patch.unset.extend([slots.marker, slots.side_data])
            continue

        key = key or config.resolve_key()
        if isinstance(value, str):
            patch.set[slots.name] = _encrypt_value(value, key, config)
            patch.unset.append(slots.side_data)
        else:
            patch.unset.append(slots.name)
            patch.set[slots.side_data] = _encrypt_structured(value, key, config)
        patch.set[slots.marker] = True

    return patch


def strip_markers(doc: MutableMapping, config: FieldEncryptionConfig) -> MutableMapping:
    """Remove marker and side-data slots, leaving field values as they are."""
    if doc is None:
        return doc

    for slots in config.slots:
        for target in _targets(doc, slots.path):
            target.pop(slots.marker, None)
            target.pop(slots.side_data, None)

    return doc
