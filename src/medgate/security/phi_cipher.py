"""PHI Cipher.

Field-level protection for PHI values:

- ``encrypt``/``decrypt`` go through the key-management service, bound to
  the configured master key.
- ``seal`` uses envelope encryption for bulk values: a fresh data key from
  KMS encrypts the value locally with AES-256-GCM and travels, encrypted,
  inside the resulting token.
- ``encrypt_local``/``decrypt_local`` are the AES-256-GCM primitive, packed
  as ``iv:authTag:ciphertext`` (hex). Decryption verifies the tag and fails
  closed.
- ``hash`` and ``mask`` are local and never need key material.

Plaintext never appears in log events emitted from here.
"""

import asyncio
import base64
import binascii
import hashlib
import os
from typing import Any, Callable, TypeVar

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from medgate.core.exceptions import CryptoError
from medgate.security.key_management import TRANSIENT_ERRORS, DataKey, KeyManagementClient
from medgate.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DELIMITER = ":"
ENVELOPE_PREFIX = "env1"
IV_LENGTH = 12
KEY_LENGTH = 32
MASK = "****"

_RETRYABLE = (asyncio.TimeoutError,) + TRANSIENT_ERRORS


class PHICipher:
    """Encrypts, decrypts, hashes and masks PHI field values."""

    def __init__(
        self,
        kms: KeyManagementClient,
        key_id: str,
        timeout_seconds: float = 5.0,
        max_attempts: int = 3,
    ) -> None:
        """
        Initialize the cipher.

        Args:
            kms: Key-management capability
            key_id: Master key reference every ciphertext is bound to
            timeout_seconds: Upper bound for each key-management call
            max_attempts: Attempts for transient key-management failures
        """
        self.kms = kms
        self.key_id = key_id
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts

    async def encrypt(self, plaintext: str) -> str:
        """Encrypt a value with the master key. Output differs on every call."""
        if not self.key_id:
            raise CryptoError("No master key configured")
        blob = await self._call(self.kms.encrypt, self.key_id, plaintext.encode("utf-8"))
        return base64.b64encode(blob).decode("ascii")

    async def decrypt(self, ciphertext: str) -> str:
        """Decrypt a KMS token or a sealed envelope."""
        if ciphertext.startswith(ENVELOPE_PREFIX + DELIMITER):
            return await self.unseal(ciphertext)
        try:
            blob = base64.b64decode(ciphertext.encode("ascii"), validate=True)
        except (binascii.Error, ValueError, UnicodeError) as e:
            raise CryptoError("Malformed ciphertext") from e
        if not blob:
            raise CryptoError("Malformed ciphertext")
        plaintext = await self._call(self.kms.decrypt, blob)
        return _decode_text(plaintext)

    async def generate_data_key(self) -> DataKey:
        if not self.key_id:
            raise CryptoError("No master key configured")
        return await self._call(self.kms.generate_data_key, self.key_id)

    async def seal(self, plaintext: str) -> str:
        """Envelope-encrypt a value under a fresh data key."""
        data_key = await self.generate_data_key()
        packed = self.encrypt_local(plaintext, data_key.plaintext)
        wrapped_key = base64.b64encode(data_key.encrypted).decode("ascii")
        return DELIMITER.join([ENVELOPE_PREFIX, wrapped_key, packed])

    async def unseal(self, sealed: str) -> str:
        parts = sealed.split(DELIMITER, 2)
        if len(parts) != 3 or parts[0] != ENVELOPE_PREFIX:
            raise CryptoError("Malformed envelope")
        try:
            wrapped_key = base64.b64decode(parts[1].encode("ascii"), validate=True)
        except (binascii.Error, ValueError, UnicodeError) as e:
            raise CryptoError("Malformed envelope") from e
        key = await self._call(self.kms.decrypt, wrapped_key)
        return self.decrypt_local(parts[2], key)

    @staticmethod
    def encrypt_local(plaintext: str, key: bytes) -> str:
        """AES-256-GCM encrypt, packed as ``iv:authTag:ciphertext``."""
        if len(key) != KEY_LENGTH:
            raise CryptoError("Data key must be 256 bits")
        iv = os.urandom(IV_LENGTH)
        encryptor = Cipher(algorithms.AES(key), modes.GCM(iv)).encryptor()
        ciphertext = encryptor.update(plaintext.encode("utf-8")) + encryptor.finalize()
        return DELIMITER.join([iv.hex(), encryptor.tag.hex(), ciphertext.hex()])

    @staticmethod
    def decrypt_local(packed: str, key: bytes) -> str:
        """Verify and decrypt an ``iv:authTag:ciphertext`` triplet.

        Nothing is returned unless the authentication tag verifies.
        """
        if len(key) != KEY_LENGTH:
            raise CryptoError("Data key must be 256 bits")
        parts = packed.split(DELIMITER)
        if len(parts) != 3:
            raise CryptoError("Malformed ciphertext")
        try:
            iv, tag, ciphertext = (bytes.fromhex(part) for part in parts)
            if len(iv) != IV_LENGTH:
                raise ValueError("unexpected IV length")
            decryptor = Cipher(algorithms.AES(key), modes.GCM(iv, tag)).decryptor()
            plaintext = decryptor.update(ciphertext) + decryptor.finalize()
        except InvalidTag as e:
            logger.warning("phi_integrity_check_failed")
            raise CryptoError("Integrity check failed") from e
        except ValueError as e:
            raise CryptoError("Malformed ciphertext") from e
        return _decode_text(plaintext)

    @staticmethod
    def hash(data: str) -> str:
        """One-way SHA-256 digest for equality-searchable fields."""
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

    @staticmethod
    def mask(data: str, visible_chars: int = 4) -> str:
        """Reveal only the first/last ``visible_chars`` characters."""
        if visible_chars < 0:
            raise ValueError("visible_chars must not be negative")
        if not data or len(data) <= visible_chars * 2:
            return MASK
        if visible_chars == 0:
            return MASK
        return f"{data[:visible_chars]}{MASK}{data[-visible_chars:]}"

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking KMS call off the loop, bounded in time and attempts."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=0.1, max=1.0),
                retry=retry_if_exception_type(_RETRYABLE),
                reraise=True,
            ):
                with attempt:
                    result = await asyncio.wait_for(
                        asyncio.to_thread(func, *args), timeout=self.timeout_seconds
                    )
        except _RETRYABLE as e:
            logger.error(
                "kms_unavailable",
                operation=getattr(func, "__name__", "kms"),
                attempts=self.max_attempts,
                error_type=type(e).__name__,
            )
            raise CryptoError("Key management service unavailable") from e
        return result


def _decode_text(plaintext: bytes) -> str:
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError("Decrypted value is not valid text") from e


__all__ = ["PHICipher", "DELIMITER", "ENVELOPE_PREFIX", "MASK"]
