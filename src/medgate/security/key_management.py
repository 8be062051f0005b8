"""Key management capability.

MedGate never holds master key material. Direct encryption and data-key
generation are delegated to a key-management service; the default
implementation talks to AWS KMS through boto3.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from medgate.core.exceptions import CryptoError
from medgate.utils.logging import get_logger

logger = get_logger(__name__)

# Failures worth another bounded attempt; everything else fails closed at once
TRANSIENT_ERRORS = (ConnectTimeoutError, EndpointConnectionError, ReadTimeoutError)


@dataclass(frozen=True)
class DataKey:
    """A data encryption key and its master-key-encrypted form."""

    plaintext: bytes
    encrypted: bytes

    def __repr__(self) -> str:
        return f"DataKey(encrypted=<{len(self.encrypted)} bytes>)"


class KeyManagementClient(Protocol):
    """Encrypt/decrypt by key reference and generate data keys."""

    def encrypt(self, key_id: str, plaintext: bytes) -> bytes:
        ...

    def decrypt(self, ciphertext: bytes) -> bytes:
        ...

    def generate_data_key(self, key_id: str) -> DataKey:
        ...


class AwsKmsClient:
    """AWS KMS implementation of ``KeyManagementClient``."""

    def __init__(
        self,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        timeout_seconds: float = 5.0,
        client: Any = None,
    ) -> None:
        """
        Initialize the KMS client.

        Args:
            region: AWS region where the keys live
            endpoint_url: Optional endpoint override (local KMS emulators)
            timeout_seconds: Connect and read timeout for each call
            client: Pre-built boto3 KMS client, mainly for tests
        """
        if client is None:
            # MedGate bounds retries itself; botocore makes a single attempt
            config = Config(
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                retries={"max_attempts": 1, "mode": "standard"},
            )
            params: Dict[str, Any] = {"region_name": region, "config": config}
            if endpoint_url:
                params["endpoint_url"] = endpoint_url
            client = boto3.client("kms", **params)
        self.kms_client = client

    def encrypt(self, key_id: str, plaintext: bytes) -> bytes:
        try:
            response = self.kms_client.encrypt(KeyId=key_id, Plaintext=plaintext)
            return bytes(response["CiphertextBlob"])
        except TRANSIENT_ERRORS:
            raise
        except (ClientError, BotoCoreError) as e:
            logger.error("kms_encrypt_failed", error_type=type(e).__name__)
            raise CryptoError("KMS encrypt failed") from e

    def decrypt(self, ciphertext: bytes) -> bytes:
        try:
            response = self.kms_client.decrypt(CiphertextBlob=ciphertext)
            return bytes(response["Plaintext"])
        except TRANSIENT_ERRORS:
            raise
        except (ClientError, BotoCoreError) as e:
            logger.error("kms_decrypt_failed", error_type=type(e).__name__)
            raise CryptoError("KMS decrypt failed") from e

    def generate_data_key(self, key_id: str) -> DataKey:
        try:
            response = self.kms_client.generate_data_key(KeyId=key_id, KeySpec="AES_256")
            return DataKey(
                plaintext=bytes(response["Plaintext"]),
                encrypted=bytes(response["CiphertextBlob"]),
            )
        except TRANSIENT_ERRORS:
            raise
        except (ClientError, BotoCoreError) as e:
            logger.error("kms_generate_data_key_failed", error_type=type(e).__name__)
            raise CryptoError("KMS data key generation failed") from e


__all__ = ["TRANSIENT_ERRORS", "DataKey", "KeyManagementClient", "AwsKmsClient"]
