"""
Credential Cipher.

Encrypts the sensitive values the key/value store keeps on disk (the
session handle and the wallet ``auth_token``) so that a copied database
file cannot be replayed from another machine.

Security model
--------------
- The encryption key is derived at runtime from machine-specific
  characteristics (hostname + OS username) via PBKDF2-HMAC-SHA256 with
  a per-machine random salt.  The key is **never** persisted to disk.
- Values are encrypted with AES-256-GCM, providing both confidentiality
  and integrity (authenticated encryption).
- If the machine identity or salt changes, previously stored values can
  no longer be decrypted and are treated as absent; the user simply
  signs in again.

Stored format (single text value)::

    enc:v1:<base64(nonce | tag | ciphertext)>
"""

from __future__ import annotations

import base64
import getpass
import os
import platform
import socket
import stat
from pathlib import Path
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from thaicraft.logger import StructuredLogger


class CredentialCipher:
    """AES-256-GCM wrapper for individual store values.

    Parameters
    ----------
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    key:
        Explicit 32-byte key.  When omitted the key is derived lazily
        from machine identity on first use and cached for the lifetime
        of the instance.
    salt_path:
        Location of the per-machine salt file.  Defaults to
        ``~/.thaicraft_store_salt``.
    """

    _PBKDF2_ITERATIONS: int = 600_000
    _KEY_LENGTH: int = 32  # 256 bits
    _NONCE_LENGTH: int = 16
    _TAG_LENGTH: int = 16
    PREFIX: str = "enc:v1:"

    def __init__(
        self,
        logger: StructuredLogger,
        key: Optional[bytes] = None,
        salt_path: Optional[Path] = None,
    ) -> None:
        if key is not None and len(key) != self._KEY_LENGTH:
            raise ValueError(f"Cipher key must be {self._KEY_LENGTH} bytes.")
        self._logger: StructuredLogger = logger
        self._key: Optional[bytes] = key
        self._salt_path: Path = salt_path or Path.home() / ".thaicraft_store_salt"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @classmethod
    def is_encrypted(cls, value: str) -> bool:
        return value.startswith(cls.PREFIX)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt *plaintext* into the ``enc:v1:`` text format.

        Raises
        ------
        OSError
            If the per-machine salt cannot be read or created.
        """
        cipher = AES.new(self._get_key(), AES.MODE_GCM, nonce=os.urandom(self._NONCE_LENGTH))  # type: ignore[attr-defined]
        ciphertext, tag = cipher.encrypt_and_digest(plaintext.encode("utf-8"))
        blob: bytes = cipher.nonce + tag + ciphertext
        return self.PREFIX + base64.b64encode(blob).decode("ascii")

    def decrypt(self, token: str) -> str:
        """Decrypt a value produced by :meth:`encrypt`.

        Raises
        ------
        ValueError
            If *token* is not in the expected format, was produced with a
            different key, or has been tampered with.
        """
        if not self.is_encrypted(token):
            raise ValueError("Value is not an encrypted credential.")
        try:
            blob: bytes = base64.b64decode(token[len(self.PREFIX):], validate=True)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"Encrypted credential is not valid base64: {exc}") from exc

        header: int = self._NONCE_LENGTH + self._TAG_LENGTH
        if len(blob) < header:
            raise ValueError("Encrypted credential is truncated.")

        nonce, tag, ciphertext = blob[:self._NONCE_LENGTH], blob[self._NONCE_LENGTH:header], blob[header:]
        cipher = AES.new(self._get_key(), AES.MODE_GCM, nonce=nonce)  # type: ignore[attr-defined]
        plaintext: bytes = cipher.decrypt_and_verify(ciphertext, tag)
        return plaintext.decode("utf-8")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _get_key(self) -> bytes:
        if self._key is None:
            self._key = self._derive_key()
        return self._key

    def _derive_key(self) -> bytes:
        """Derive a 256-bit AES key from machine identity via PBKDF2-HMAC-SHA256.

        ``hostname:username`` binds the key to this machine and account;
        the real entropy comes from the per-installation random salt.
        This protects stored tokens against casual disk access, not
        against an attacker who already controls the OS account.
        """
        password: str = f"{socket.gethostname()}:{getpass.getuser()}"
        salt: bytes = self._get_or_create_salt()
        key: bytes = PBKDF2(
            password=password,
            salt=salt,
            dkLen=self._KEY_LENGTH,
            count=self._PBKDF2_ITERATIONS,
            hmac_hash_module=SHA256,
        )
        self._logger.debug("Store encryption key derived.")
        return key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine random salt, creating it on first run.

        Raises
        ------
        OSError
            If the salt file cannot be read or written.  Callers must
            refuse to store the credential rather than fall back to a
            static salt.
        """
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == 32:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.",
                len(data),
            )
        salt: bytes = os.urandom(32)
        self._salt_path.write_bytes(salt)

        if platform.system() != "Windows":
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Per-machine store salt created at %s.", self._salt_path)
        return salt
