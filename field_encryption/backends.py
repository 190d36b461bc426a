"""
Cipher backends for field encryption.

Encoded values produced by the current backend have the form
``IV_HEX:CIPHERTEXT_HEX`` where the IV is 16 bytes and the ciphertext is
AES-256-CBC with PKCS7 padding. Values without a ``:`` separator were written
by the deprecated AES-256-CTR scheme, which derives both key and counter from
the key material and embeds no IV.
"""

import hashlib
import logging
import os
from enum import Enum
from typing import Callable, Optional, Union

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .exceptions import DecryptionError, EncryptionError, InvalidSaltError

logger = logging.getLogger(__name__)

SALT_LENGTH = 16
KEY_LENGTH = 32
SEPARATOR = ':'

KeyMaterial = Union[str, bytes]
SaltGenerator = Callable[[KeyMaterial], Union[str, bytes]]


class CipherStrategy(str, Enum):
    """Cipher used to write encrypted fields."""

    AES_256_CBC = 'aes-256-cbc'
    AES_256_CTR = 'aes-256-ctr'  # deprecated, no IV


def _key_bytes(key: KeyMaterial) -> bytes:
    if isinstance(key, str):
        return key.encode('utf-8')
    return bytes(key)


def random_salt(key: KeyMaterial) -> bytes:
    """Default salt generator: 16 cryptographically random bytes."""
    return os.urandom(SALT_LENGTH)


def _coerce_salt(salt) -> bytes:
    """
    Validate a generated salt and return its byte form.

    Raises:
        InvalidSaltError: If the salt has the wrong type or length
    """
    if isinstance(salt, str):
        if len(salt) != SALT_LENGTH:
            raise InvalidSaltError(
                f"Unexpected salt length: string salt must be {SALT_LENGTH} characters, got {len(salt)}"
            )
        salt = salt.encode('utf-8')
    elif isinstance(salt, (bytes, bytearray)):
        salt = bytes(salt)
    else:
        raise InvalidSaltError(
            f"Unexpected salt type: expected str or bytes, got {type(salt).__name__}"
        )

    if len(salt) != SALT_LENGTH:
        raise InvalidSaltError(
            f"Unexpected salt length: salt buffer must be {SALT_LENGTH} bytes, got {len(salt)}"
        )
    return salt


def _evp_bytes_to_key(password: bytes, key_length: int = KEY_LENGTH, iv_length: int = SALT_LENGTH):
    """OpenSSL EVP_BytesToKey with MD5, one iteration and no salt."""
    derived = b''
    block = b''
    while len(derived) < key_length + iv_length:
        block = hashlib.md5(block + password).digest()
        derived += block
    return derived[:key_length], derived[key_length:key_length + iv_length]


def _legacy_cipher(key: KeyMaterial) -> Cipher:
    cipher_key, counter = _evp_bytes_to_key(_key_bytes(key))
    return Cipher(algorithms.AES(cipher_key), modes.CTR(counter), backend=default_backend())


def encrypt_legacy(text: str, key: KeyMaterial) -> str:
    """
    Encrypt text with the deprecated AES-256-CTR scheme.

    Only kept so that data can be written for readers that predate IV-based
    encoding. New data should use :func:`encrypt`.
    """
    encryptor = _legacy_cipher(key).encryptor()
    encrypted = encryptor.update(text.encode('utf-8')) + encryptor.finalize()
    return encrypted.hex()


def decrypt_legacy(encrypted_hex: str, key: KeyMaterial) -> str:
    """Decrypt a value written by :func:`encrypt_legacy`."""
    decryptor = _legacy_cipher(key).decryptor()
    decrypted = decryptor.update(bytes.fromhex(encrypted_hex)) + decryptor.finalize()
    return decrypted.decode('utf-8')


def encrypt(clear_text: str, key: KeyMaterial, salt_generator: Optional[SaltGenerator] = None) -> str:
    """
    Encrypt text using AES-256-CBC with the generated salt as IV.

    Args:
        clear_text: The string to encrypt
        key: 32-byte key material (str keys are UTF-8 encoded)
        salt_generator: Called with ``key``; returns a 16-byte buffer or a
            16-character string. Defaults to random bytes.

    Returns:
        ``IV_HEX:CIPHERTEXT_HEX``

    Raises:
        InvalidSaltError: If the generated salt is malformed
        EncryptionError: If the key cannot be used for AES-256
    """
    salt = _coerce_salt((salt_generator or random_salt)(key))
    key_material = _key_bytes(key)
    if len(key_material) != KEY_LENGTH:
        logger.error(f"Encryption failed: key must be {KEY_LENGTH} bytes, got {len(key_material)}")
        raise EncryptionError(f"AES-256 key must be {KEY_LENGTH} bytes")

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(clear_text.encode('utf-8')) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key_material), modes.CBC(salt), backend=default_backend()).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return salt.hex() + SEPARATOR + ciphertext.hex()


def _decrypt_cbc(iv_hex: str, ciphertext_hex: str, key: KeyMaterial) -> str:
    key_material = _key_bytes(key)
    if len(key_material) != KEY_LENGTH:
        raise ValueError(f"AES-256 key must be {KEY_LENGTH} bytes")

    iv = bytes.fromhex(iv_hex)
    ciphertext = bytes.fromhex(ciphertext_hex)

    decryptor = Cipher(algorithms.AES(key_material), modes.CBC(iv), backend=default_backend()).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    clear = unpadder.update(padded) + unpadder.finalize()
    return clear.decode('utf-8')


def decrypt(encoded_hex: str, key: KeyMaterial, notify_on_failure: bool = True) -> str:
    """
    Decrypt a value produced by :func:`encrypt`.

    Values without a ``:`` separator fall back to the deprecated AES-256-CTR
    scheme so that data written before IVs were embedded stays readable.

    Args:
        encoded_hex: ``IV_HEX:CIPHERTEXT_HEX`` or a legacy hex string
        key: Key material used to encrypt the value
        notify_on_failure: Raise on failure if True, otherwise return ``""``

    Raises:
        DecryptionError: If decryption fails and ``notify_on_failure`` is set
    """
    parts = encoded_hex.split(SEPARATOR)

    try:
        if len(parts) == 1:
            return decrypt_legacy(parts[0], key)
        if len(parts) != 2:
            raise ValueError(f"expected a single '{SEPARATOR}' separator, found {len(parts) - 1}")
        return _decrypt_cbc(parts[0], parts[1], key)

    except (ValueError, UnicodeDecodeError) as e:
        if not notify_on_failure:
            logger.warning(f"Suppressed decryption failure: {str(e)}")
            return ''
        logger.error(f"Decryption failed: {str(e)}")
        raise DecryptionError(f"Failed to decrypt data: {str(e)}") from e


class AESCBCBackend:
    """
    AES-256-CBC backend with an explicit, embedded IV.

    Reads legacy AES-256-CTR values transparently.
    """

    strategy = CipherStrategy.AES_256_CBC

    def encrypt(self, clear_text: str, key: KeyMaterial, salt_generator: Optional[SaltGenerator] = None) -> str:
        return encrypt(clear_text, key, salt_generator)

    def decrypt(self, encoded: str, key: KeyMaterial, notify_on_failure: bool = True) -> str:
        return decrypt(encoded, key, notify_on_failure=notify_on_failure)


class LegacyCTRBackend:
    """
    Deprecated AES-256-CTR backend with an implicit IV.

    Selected only when a field set is explicitly configured for the legacy
    scheme; salt generators are ignored since the scheme has no IV.
    """

    strategy = CipherStrategy.AES_256_CTR

    def encrypt(self, clear_text: str, key: KeyMaterial, salt_generator: Optional[SaltGenerator] = None) -> str:
        return encrypt_legacy(clear_text, key)

    def decrypt(self, encoded: str, key: KeyMaterial, notify_on_failure: bool = True) -> str:
        try:
            return decrypt_legacy(encoded, key)
        except (ValueError, UnicodeDecodeError) as e:
            if not notify_on_failure:
                logger.warning(f"Suppressed legacy decryption failure: {str(e)}")
                return ''
            logger.error(f"Legacy decryption failed: {str(e)}")
            raise DecryptionError(f"Failed to decrypt data: {str(e)}") from e


_backends = {
    CipherStrategy.AES_256_CBC: AESCBCBackend(),
    CipherStrategy.AES_256_CTR: LegacyCTRBackend(),
}


def get_encryption_backend(strategy: CipherStrategy = CipherStrategy.AES_256_CBC):
    """
    Get the backend instance for a cipher strategy.

    Backends are stateless, so a single instance per strategy is shared.
    """
    try:
        return _backends[CipherStrategy(strategy)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown cipher strategy: {strategy}")
