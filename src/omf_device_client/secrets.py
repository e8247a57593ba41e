"""Encrypted storage for credentials such as the OMF producer token.

File format::

    [8 bytes:  magic "OMFSECRT"]
    [1 byte:   version = 0x01]
    [16 bytes: salt, bound as AES-GCM associated data]
    [12 bytes: nonce]
    [N bytes:  ciphertext + 16-byte GCM tag]

The master key is 32 raw bytes in a separate key file (mode 0600).  Values
are referenced from ``config.json`` as ``${NAME}``, e.g.
``"producer_token": "${OMF_PRODUCER_TOKEN}"``.
"""

from __future__ import annotations

import os
from pathlib import Path

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

MAGIC = b"OMFSECRT"
VERSION = 0x01
KEY_LEN = 32
SALT_LEN = 16
NONCE_LEN = 12
_HEADER_LEN = len(MAGIC) + 1 + SALT_LEN + NONCE_LEN


class SecretStoreError(Exception):
    """The secrets file or key file is unusable."""


def create_key_file(path: str | Path) -> bytes:
    """Write a fresh random master key to *path* unless one already exists."""
    kf = Path(path)
    if not kf.exists():
        kf.write_bytes(os.urandom(KEY_LEN))
        os.chmod(kf, 0o600)
    return read_key_file(kf)


def read_key_file(path: str | Path) -> bytes:
    kf = Path(path)
    if not kf.exists():
        raise SecretStoreError(f"Key file not found: {kf}")
    key = kf.read_bytes()
    if len(key) != KEY_LEN:
        raise SecretStoreError(f"Key file must be exactly {KEY_LEN} bytes, got {len(key)}")
    return key


class SecretStore:
    """A small ``name → value`` mapping persisted encrypted on disk.

    Parameters
    ----------
    path:
        Location of the encrypted file.
    key:
        32-byte AES-256 key (see :func:`read_key_file`).
    """

    def __init__(self, path: str | Path, key: bytes) -> None:
        self._path = Path(path)
        self._key = key

    @classmethod
    def init(cls, path: str | Path, key_file: str | Path) -> "SecretStore":
        """Create an empty store (and the key file if missing)."""
        store = cls(path, create_key_file(key_file))
        store.save({})
        return store

    @classmethod
    def open(cls, path: str | Path, key_file: str | Path) -> "SecretStore":
        return cls(path, read_key_file(key_file))

    def load(self) -> dict[str, str]:
        data = self._path.read_bytes()
        if data[: len(MAGIC)] != MAGIC:
            raise SecretStoreError(f"{self._path} is not a secrets file (bad magic)")
        if len(data) < _HEADER_LEN or data[len(MAGIC)] != VERSION:
            raise SecretStoreError(f"Unsupported secrets file version in {self._path}")

        offset = len(MAGIC) + 1
        salt = data[offset:offset + SALT_LEN]
        nonce = data[offset + SALT_LEN:_HEADER_LEN]
        try:
            plaintext = AESGCM(self._key).decrypt(nonce, data[_HEADER_LEN:], salt)
        except InvalidTag as exc:
            raise SecretStoreError(f"Cannot decrypt {self._path}: wrong key or corrupt file") from exc
        return orjson.loads(plaintext)

    def save(self, values: dict[str, str]) -> None:
        salt = os.urandom(SALT_LEN)
        nonce = os.urandom(NONCE_LEN)
        ciphertext = AESGCM(self._key).encrypt(nonce, orjson.dumps(values), salt)
        with open(self._path, "wb") as fh:
            fh.write(MAGIC)
            fh.write(bytes([VERSION]))
            fh.write(salt)
            fh.write(nonce)
            fh.write(ciphertext)
        os.chmod(self._path, 0o600)

    def set(self, name: str, value: str) -> None:
        values = self.load()
        values[name] = value
        self.save(values)

    def names(self) -> list[str]:
        """Stored names, sorted; values are never returned here."""
        return sorted(self.load())

    def rekey(self, new_key_file: str | Path) -> "SecretStore":
        """Re-encrypt under the key in *new_key_file* (created if missing)."""
        values = self.load()
        rekeyed = SecretStore(self._path, create_key_file(new_key_file))
        rekeyed.save(values)
        return rekeyed
