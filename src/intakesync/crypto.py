"""
At-rest encryption for drafts.

Fernet (AES-128-CBC + HMAC-SHA256) over JSON, with the Fernet key
derived by HKDF-SHA256 from a per-device master key. Encrypted payloads
carry an ``ENC:`` prefix so legacy plaintext can be told apart.

Storage layout:
    <home>/security/keys/
    └── phi.key          # 32 random bytes, mode 0600
"""

from __future__ import annotations

import base64
import json
import logging
import os
import secrets
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

logger = logging.getLogger("intakesync.crypto")

ENC_PREFIX = "ENC:"
KEY_FILE = "phi.key"
_PHI_INFO = b"intakesync-phi"
_AUDIT_INFO = b"intakesync-audit-hmac"


class DecryptionError(Exception):
    """Raised when a stored payload cannot be decrypted or parsed."""


def derive_key(master_material: bytes, info: bytes, length: int = 32) -> bytes:
    """Derive a purpose-specific key using HKDF-SHA256.

    Args:
        master_material: Input keying material.
        info: Context string separating key purposes.
        length: Output length in bytes.
    """
    hkdf = HKDF(algorithm=SHA256(), length=length, salt=None, info=info)
    return hkdf.derive(master_material)


def is_encrypted(value: Any) -> bool:
    """Whether a stored string is ciphertext rather than legacy plaintext."""
    return isinstance(value, str) and value.startswith(ENC_PREFIX)


def load_or_create_master_key(home: Path) -> bytes:
    """Read the device master key, generating it on first use."""
    key_dir = Path(home).expanduser() / "security" / "keys"
    key_path = key_dir / KEY_FILE
    if key_path.exists():
        material = key_path.read_bytes()
        if len(material) >= 32:
            return material
        logger.warning("Master key at %s is truncated, regenerating", key_path)

    key_dir.mkdir(parents=True, exist_ok=True)
    material = secrets.token_bytes(32)
    tmp_path = key_path.with_suffix(".tmp")
    tmp_path.write_bytes(material)
    os.chmod(tmp_path, 0o600)
    tmp_path.replace(key_path)
    logger.info("Generated new draft encryption key at %s", key_path)
    return material


class DraftCipher:
    """Encrypts JSON-serializable values for device-local storage.

    Args:
        master_key: At least 32 bytes of key material.
    """

    def __init__(self, master_key: bytes) -> None:
        if len(master_key) < 32:
            raise ValueError("master_key must be at least 32 bytes")
        self._master_key = master_key
        fernet_key = base64.urlsafe_b64encode(derive_key(master_key, _PHI_INFO))
        self._fernet = Fernet(fernet_key)

    @classmethod
    def from_home(cls, home: Path) -> "DraftCipher":
        """Build a cipher from the device master key under ``home``."""
        return cls(load_or_create_master_key(home))

    def audit_seal_key(self) -> bytes:
        """HMAC key for audit entries, separate from the encryption key."""
        return derive_key(self._master_key, _AUDIT_INFO)

    def encrypt(self, obj: Any) -> str:
        """Serialize ``obj`` as JSON and encrypt it.

        Returns:
            ``"ENC:" + <Fernet token>``.

        Raises:
            TypeError: If ``obj`` is not JSON-serializable.
        """
        plaintext = json.dumps(obj, separators=(",", ":")).encode("utf-8")
        return ENC_PREFIX + self._fernet.encrypt(plaintext).decode("ascii")

    def decrypt(self, payload: str) -> Any:
        """Decrypt a payload back into a Python value.

        Plaintext JSON (no ``ENC:`` prefix) is parsed directly; that is
        the legacy migration path.

        Raises:
            DecryptionError: Bad token, wrong key, or invalid JSON.
        """
        try:
            if not is_encrypted(payload):
                return json.loads(payload)
            token = payload[len(ENC_PREFIX):].encode("ascii")
            return json.loads(self._fernet.decrypt(token).decode("utf-8"))
        except (InvalidToken, UnicodeError, ValueError) as exc:
            raise DecryptionError(f"Cannot decrypt draft payload: {exc}") from exc

    def is_encrypted(self, value: Any) -> bool:
        return is_encrypted(value)
