"""
Canonical string form for structured field values.
"""

import json
from typing import Any

from django.core.serializers.json import DjangoJSONEncoder

from .exceptions import UnsupportedFieldTypeError

# Compact output, matching the ciphertext of records written by JavaScript
# clients (JSON.stringify).
JSON_SEPARATORS = (',', ':')


class FieldJSONEncoder(DjangoJSONEncoder):
    """
    JSON encoder for structured field values.

    Datetimes use DjangoJSONEncoder's ECMA-262 format
    (``2017-01-28T22:04:08.338Z``); sets are written as lists.
    """

    def default(self, o):
        if isinstance(o, (set, frozenset)):
            return list(o)
        return super().default(o)


def serialize_value(value: Any) -> str:
    """
    Convert a structured value to its canonical string form.

    Raises:
        UnsupportedFieldTypeError: If the value cannot be represented as JSON
    """
    try:
        return json.dumps(value, cls=FieldJSONEncoder, separators=JSON_SEPARATORS)
    except (TypeError, ValueError) as e:
        raise UnsupportedFieldTypeError(
            f"Cannot serialize {type(value).__name__} for encryption: {str(e)}"
        ) from e


def deserialize_value(text: str) -> Any:
    """
    Restore a structured value from its canonical string form.

    An empty string (the result of a suppressed decryption failure) restores
    to ``None``.
    """
    if text == '':
        return None
    return json.loads(text)
