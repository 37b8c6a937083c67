"""
Token Encryption at Rest.

Encrypts individual credential values before they reach the local
SQLite ``credential_store`` table.

Security model
--------------
- The AES key is derived at runtime from machine identity
  (``hostname:username``) and a per-machine random salt via
  PBKDF2-HMAC-SHA256.  The key is **never** persisted to disk.
- Values are encrypted with AES-256-GCM, providing both confidentiality
  and integrity.  A value that fails verification is treated as absent
  by the caller.
- If the salt file cannot be created, encryption is refused with
  ``OSError`` rather than falling back to a weak static salt.

The protection targets casual disk access (a copied database file is
useless on another machine or under another OS account).  It does not
resist an attacker running code as the same OS user.
"""

from __future__ import annotations

import getpass
import os
import socket
import stat
from pathlib import Path
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from edu_client.logger import StructuredLogger

_SALT_LENGTH: int = 32


class TokenCipher:
    """AES-256-GCM encryption keyed to the current machine and OS user.

    Parameters
    ----------
    salt_path:
        File holding the per-machine random salt.  Created on first use
        with owner-only permissions.
    logger:
        Structured logger instance.
    iterations:
        PBKDF2 iteration count.
    """

    _KEY_LENGTH: int = 32  # 256 bits

    def __init__(
        self,
        salt_path: Path,
        logger: StructuredLogger,
        iterations: int = 600_000,
    ) -> None:
        self._salt_path: Path = salt_path
        self._logger: StructuredLogger = logger
        self._iterations: int = iterations
        self._key: Optional[bytes] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def encrypt(self, value: str) -> tuple[bytes, bytes, bytes]:
        """Encrypt *value* and return ``(ciphertext, nonce, tag)``.

        Raises
        ------
        OSError
            If the per-machine salt file cannot be created or read.
        """
        cipher = AES.new(self._derive_key(), AES.MODE_GCM)  # type: ignore[attr-defined]
        ciphertext, tag = cipher.encrypt_and_digest(value.encode("utf-8"))
        return ciphertext, cipher.nonce, tag

    def decrypt(self, ciphertext: bytes, nonce: bytes, tag: bytes) -> str:
        """Decrypt and verify a value produced by :meth:`encrypt`.

        Raises
        ------
        ValueError
            If the ciphertext was tampered with or was produced under a
            different machine identity.
        """
        cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=nonce)  # type: ignore[attr-defined]
        plaintext: bytes = cipher.decrypt_and_verify(ciphertext, tag)
        return plaintext.decode("utf-8")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _derive_key(self) -> bytes:
        """Derive (once) the 256-bit AES key from machine identity."""
        if self._key is None:
            password: str = f"{socket.gethostname()}:{getpass.getuser()}"
            self._key = PBKDF2(
                password=password,
                salt=self._get_or_create_salt(),
                dkLen=self._KEY_LENGTH,
                count=self._iterations,
                hmac_hash_module=SHA256,
            )
        return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine random salt, creating it on first run.

        Raises
        ------
        OSError
            If the salt file cannot be read or written.
        """
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == _SALT_LENGTH:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.",
                len(data),
            )

        salt: bytes = os.urandom(_SALT_LENGTH)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)
        self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Per-machine token salt created at %s.", self._salt_path)
        return salt
