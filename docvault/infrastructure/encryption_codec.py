"""
Encryption Codec

AES-256-CBC encryption of document bytes with a fresh random IV per file.
Cipher work runs on a dedicated thread pool so it never blocks the event
loop. The worker functions are pure: bytes, key and IV go in, ciphertext
or plaintext comes out, and nothing mutable is shared with the caller.
"""

import asyncio
import binascii
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Tuple

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from docvault.config.settings import ENCRYPTION_KEY_PATTERN
from docvault.domain.errors import ConfigurationError, CryptoOperationError

logger = logging.getLogger(__name__)

IV_LENGTH = 16
BLOCK_SIZE_BITS = 128


@dataclass(frozen=True)
class EncryptedPayload:
    """Ciphertext plus the hex IV needed to decrypt it."""
    ciphertext: bytes
    iv: str


def encrypt_worker(data: bytes, key: bytes) -> Tuple[bytes, str]:
    """
    Encrypt bytes with AES-256-CBC and PKCS7 padding.

    Args:
        data: Plaintext bytes
        key: 32-byte key

    Returns:
        Tuple of (ciphertext, hex IV)

    Raises:
        CryptoOperationError: If encryption fails
    """
    try:
        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(data) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        return encryptor.update(padded) + encryptor.finalize(), iv.hex()
    except (ValueError, TypeError) as e:
        raise CryptoOperationError(f"Encryption failed: {e}", operation="encrypt", original_error=e) from e


def decrypt_worker(ciphertext: bytes, key: bytes, iv_hex: str) -> bytes:
    """
    Decrypt bytes produced by encrypt_worker.

    Args:
        ciphertext: Encrypted bytes
        key: 32-byte key
        iv_hex: Hex IV stored alongside the object

    Returns:
        Plaintext bytes

    Raises:
        CryptoOperationError: If the IV is malformed or the padding is invalid
    """
    try:
        iv = binascii.unhexlify(iv_hex)
        if len(iv) != IV_LENGTH:
            raise ValueError(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except (ValueError, TypeError, binascii.Error) as e:
        raise CryptoOperationError(f"Decryption failed: {e}", operation="decrypt", original_error=e) from e


class EncryptionCodec:
    """
    Async facade over the cipher workers.

    The key is validated when the codec is built; a malformed key is a
    startup failure, never a per-request one.
    """

    def __init__(self, key_hex: str, max_workers: int = 2,
                 executor: Optional[ThreadPoolExecutor] = None):
        """
        Initialize the codec.

        Args:
            key_hex: 64 hexadecimal characters (256-bit key)
            max_workers: Size of the cipher thread pool
            executor: Pre-built executor (tests)

        Raises:
            ConfigurationError: If key_hex is not a 256-bit hex key
        """
        if not isinstance(key_hex, str) or not ENCRYPTION_KEY_PATTERN.match(key_hex):
            raise ConfigurationError("ENCRYPTION_KEY must be 64 hexadecimal characters (256-bit key)")
        self._key = bytes.fromhex(key_hex)
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="docvault-crypto"
        )

    async def encrypt(self, data: bytes) -> EncryptedPayload:
        loop = asyncio.get_running_loop()
        ciphertext, iv = await loop.run_in_executor(self._executor, encrypt_worker, data, self._key)
        return EncryptedPayload(ciphertext=ciphertext, iv=iv)

    async def decrypt(self, ciphertext: bytes, iv: str) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, decrypt_worker, ciphertext, self._key, iv)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)
