"""
Security module for MedGate.

Provides field-level encryption, hashing and masking for PHI data.
"""

from .key_management import AwsKmsClient, DataKey, KeyManagementClient
from .phi_cipher import PHICipher

__all__ = ["AwsKmsClient", "DataKey", "KeyManagementClient", "PHICipher"]
