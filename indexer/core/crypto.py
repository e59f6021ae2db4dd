"""AES-256-CBC credential vault for tenant database passwords.

Blobs are stored as ``<iv hex>:<ciphertext hex>``. A fresh random IV is drawn
for every encryption, so the same password never encrypts to the same blob.
"""

import os
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from indexer.core.config import settings
from indexer.core.exceptions import CryptoError

KEY_LENGTH = 32
IV_LENGTH = 16


class CredentialVault:
    """Encrypts and decrypts secrets with a process-wide symmetric key."""

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise CryptoError(
                f"ENCRYPTION_KEY must be exactly {KEY_LENGTH} bytes for AES-256-CBC, got {len(key)}"
            )
        self._key = key

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string and return the ``iv:ciphertext`` hex blob."""
        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, blob: str) -> str:
        """Decrypt an ``iv:ciphertext`` hex blob.

        Raises:
            CryptoError: If the blob is malformed or was sealed with another key.
        """
        try:
            iv_hex, ciphertext_hex = blob.split(":", 1)
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
            if len(iv) != IV_LENGTH:
                raise ValueError("bad IV length")
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, AttributeError) as e:
            raise CryptoError("Stored credential could not be decrypted") from e


_vault: Optional[CredentialVault] = None


def get_vault() -> CredentialVault:
    """Return the process-wide vault, building it from settings on first use."""
    global _vault
    if _vault is None:
        _vault = CredentialVault(settings.ENCRYPTION_KEY.encode("utf-8"))
    return _vault


def generate_key() -> str:
    """Generate a random 32-character key suitable for ENCRYPTION_KEY."""
    return os.urandom(KEY_LENGTH // 2).hex()
