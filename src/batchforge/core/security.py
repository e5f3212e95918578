"""Credential encryption, decryption and fingerprinting.

Provider API keys are stored AES-256-GCM encrypted as a blob of hex fields:

    {"encrypted": "...", "iv": "...", "authTag": "...", "salt": "...", "algorithm": "aes-256-gcm"}

The blob may also arrive as its JSON string. Plaintext keys only live in
memory for the duration of one execution and are never persisted or logged.
"""
import hashlib
import json
import secrets
from typing import Any, Dict, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from batchforge.config import get_settings
from batchforge.core.exceptions import CredentialError

ALGORITHM = "aes-256-gcm"
IV_LENGTH = 16
SALT_LENGTH = 64

EncryptedCredential = Union[Dict[str, Any], str]


def generate_encryption_key() -> str:
    """
    Generate a random encryption key.

    Returns:
        str: 64 hex characters (32 bytes), suitable for ENCRYPTION_KEY
    """
    return secrets.token_hex(32)


def _load_key(key_hex: Optional[str]) -> bytes:
    if not key_hex:
        raise CredentialError("Credential decryption is not configured (ENCRYPTION_KEY is not set)")
    if len(key_hex) != 64:
        raise CredentialError("ENCRYPTION_KEY must be 64 hex characters (32 bytes)")
    try:
        return bytes.fromhex(key_hex)
    except ValueError:
        raise CredentialError("ENCRYPTION_KEY must be 64 hex characters (32 bytes)")


def encrypt_credential(plaintext: str, key_hex: Optional[str] = None) -> Dict[str, str]:
    """
    Encrypt a provider API key.

    Args:
        plaintext: The API key to encrypt
        key_hex: Encryption key (defaults to ENCRYPTION_KEY)

    Returns:
        Dict[str, str]: Encrypted blob with hex encoded fields

    Raises:
        CredentialError: If plaintext is empty or the key is invalid
    """
    if not plaintext or not isinstance(plaintext, str):
        raise CredentialError("Invalid plaintext: must be a non-empty string")

    key = _load_key(key_hex if key_hex is not None else get_settings().ENCRYPTION_KEY)
    iv = secrets.token_bytes(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    # AESGCM appends the 16 byte tag to the ciphertext
    ciphertext, auth_tag = sealed[:-16], sealed[-16:]

    return {
        "encrypted": ciphertext.hex(),
        "iv": iv.hex(),
        "authTag": auth_tag.hex(),
        "salt": secrets.token_bytes(SALT_LENGTH).hex(),
        "algorithm": ALGORITHM,
    }


def credential_fingerprint(plaintext: str) -> str:
    """
    Short, non-reversible identifier for a credential.

    Used to key rate limiters and in log lines instead of the key itself.

    Args:
        plaintext: The API key

    Returns:
        str: First 16 hex characters of its SHA-256 digest
    """
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()[:16]


class CredentialResolver:
    """Turns an encrypted credential blob into a usable API key."""

    def __init__(self, key_hex: Optional[str] = None):
        """
        Initialize resolver.

        Args:
            key_hex: Encryption key (defaults to ENCRYPTION_KEY)
        """
        self._key_hex = key_hex if key_hex is not None else get_settings().ENCRYPTION_KEY

    def resolve(self, blob: Optional[EncryptedCredential]) -> str:
        """
        Decrypt a credential blob.

        Args:
            blob: Encrypted credential as a dict or its JSON string

        Returns:
            str: Plaintext API key

        Raises:
            CredentialError: If the blob is absent, malformed or fails decryption
        """
        if not blob:
            raise CredentialError(
                "Missing API credential. Please provide an API key when submitting the batch."
            )

        data = self._parse(blob)
        missing = [field for field in ("encrypted", "iv", "authTag") if not data.get(field)]
        if missing:
            raise CredentialError(
                f"Invalid encrypted credential: missing required fields ({', '.join(missing)})"
            )

        algorithm = data.get("algorithm") or ALGORITHM
        if algorithm != ALGORITHM:
            raise CredentialError(f"Unsupported credential algorithm: {algorithm}")

        key = _load_key(self._key_hex)
        try:
            ciphertext = bytes.fromhex(data["encrypted"])
            iv = bytes.fromhex(data["iv"])
            auth_tag = bytes.fromhex(data["authTag"])
        except (TypeError, ValueError):
            raise CredentialError("Invalid encrypted credential: fields must be hex encoded")

        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + auth_tag, None)
        except (InvalidTag, ValueError):
            raise CredentialError("Credential decryption failed")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise CredentialError("Credential decryption failed")

    @staticmethod
    def _parse(blob: EncryptedCredential) -> Dict[str, Any]:
        if isinstance(blob, str):
            try:
                blob = json.loads(blob)
            except json.JSONDecodeError:
                raise CredentialError("Invalid encrypted credential: not valid JSON")
        if not isinstance(blob, dict):
            raise CredentialError("Invalid encrypted credential: must be an object")
        return blob
