"""
Backup encryption
AES-256-GCM, serialized as iv:tag:ciphertext in hex
"""
import hashlib
import os
import secrets
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.exceptions import BackupError

IV_LENGTH = 16
TAG_LENGTH = 16


def _derive_key(key: str) -> bytes:
    return hashlib.sha256(key.encode("utf-8")).digest()


def encrypt_data(data: str, key: str) -> str:
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(key)).encrypt(iv, data.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_data(encrypted: str, key: str) -> str:
    parts = encrypted.strip().split(":")
    if len(parts) != 3 or not all(parts):
        raise BackupError("Decryption failed: invalid encrypted data format")

    try:
        iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        plain = AESGCM(_derive_key(key)).decrypt(iv, ciphertext + tag, None)
    except (ValueError, InvalidTag) as e:
        raise BackupError(f"Decryption failed: {e.__class__.__name__}")
    return plain.decode("utf-8")


def encrypt_file(path: Union[str, Path], key: str) -> Path:
    """Encrypt a file in place"""
    path = Path(path)
    path.write_text(encrypt_data(path.read_text(encoding="utf-8"), key), encoding="utf-8")
    return path


def decrypt_file(path: Union[str, Path], key: str, output: Optional[Union[str, Path]] = None) -> Path:
    """Decrypt a file in place, or into output when given"""
    path = Path(path)
    target = Path(output) if output else path
    target.write_text(decrypt_data(path.read_text(encoding="utf-8"), key), encoding="utf-8")
    return target


def generate_encryption_key() -> str:
    return secrets.token_hex(32)


def hash_data(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
