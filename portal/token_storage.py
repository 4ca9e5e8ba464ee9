"""
Encrypted Token Storage.

Persists the bearer token as the single durable entry of the client
(``local_storage`` row keyed ``authToken``).  Absence of the entry means
"logged out"; presence means "assume logged in, verify lazily".

Security model
--------------
- The encryption key is derived at runtime from machine-specific
  characteristics (hostname + OS username) via PBKDF2-HMAC-SHA256 with
  a per-machine random salt.  The key is **never** persisted to disk.
- The token is encrypted with AES-256-GCM.  The entry key and its
  ``stored_at`` timestamp are bound in as associated data, so editing
  the timestamp on disk makes the entry undecryptable.
- Anything that cannot be read back (corrupt row, foreign machine,
  wrong salt) is treated as an absent entry.

Storage layout::

    local_storage
    ├── key              TEXT PRIMARY KEY  ("authToken")
    ├── encrypted_value  BLOB
    ├── nonce            BLOB
    ├── tag              BLOB
    └── stored_at        TEXT  (ISO-8601 UTC)
"""

from __future__ import annotations

import getpass
import os
import platform
import socket
import stat
import subprocess
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from portal.config import AppConfig
from portal.database import LocalDatabase
from portal.logger import StructuredLogger
from portal.models.auth_models import StoredToken


class TokenStorage:
    """Owns the one durable entry holding the bearer token.

    Parameters
    ----------
    db:
        An initialised ``LocalDatabase`` whose schema includes the
        ``local_storage`` table.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    key_name:
        Row key of the durable entry.  Fixed to ``authToken`` in
        production; only tests override it.
    salt_file_name:
        File name of the per-machine salt, created in the user's home
        directory on first write.
    """

    _PBKDF2_ITERATIONS: int = 600_000
    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32

    def __init__(
        self,
        db: LocalDatabase,
        logger: StructuredLogger,
        key_name: str = AppConfig.TOKEN_STORAGE_KEY,
        salt_file_name: str = ".portal_token_salt",
    ) -> None:
        self._db: LocalDatabase = db
        self._logger: StructuredLogger = logger
        self._key_name: str = key_name
        self._salt_file_name: str = salt_file_name
        self._key: Optional[bytes] = None
        self._key_lock: threading.Lock = threading.Lock()

    @property
    def key_name(self) -> str:
        return self._key_name

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write(self, token: str, stored_at: Optional[datetime] = None) -> bool:
        """Encrypt and upsert *token* as the durable entry.

        Returns
        -------
        bool
            ``True`` if the entry was written.  ``False`` if encryption or
            the database write failed; the in-memory session stays valid
            for this process, it just will not survive a restart.
        """
        stamp: str = (stored_at or datetime.now(tz=timezone.utc)).isoformat()

        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM)
            cipher.update(self._associated_data(stamp))
            ciphertext, tag = cipher.encrypt_and_digest(token.encode("utf-8"))
            nonce: bytes = cipher.nonce
        except (OSError, ValueError) as exc:
            self._logger.warning("Failed to encrypt the session token: %s", exc)
            return False

        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    """
                    INSERT INTO local_storage (key, encrypted_value, nonce, tag, stored_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        encrypted_value = excluded.encrypted_value,
                        nonce           = excluded.nonce,
                        tag             = excluded.tag,
                        stored_at       = excluded.stored_at
                    """,
                    (self._key_name, ciphertext, nonce, tag, stamp),
                )
                self._db.sqlite.commit()
        except Exception as exc:
            self._logger.warning(
                "Failed to write the durable token entry: %s", exc,
            )
            return False

        self._logger.debug("Durable token entry '%s' written.", self._key_name)
        return True

    def read(self) -> Optional[StoredToken]:
        """Load and decrypt the durable entry.

        Returns ``None`` when the entry is absent, unreadable, or was
        written on another machine.  No server verification happens here.
        """
        try:
            row = self._db.sqlite.execute(
                "SELECT encrypted_value, nonce, tag, stored_at "
                "FROM local_storage WHERE key = ?",
                (self._key_name,),
            ).fetchone()
        except Exception as exc:
            self._logger.warning(
                "Failed to read the durable token entry: %s", exc,
            )
            return None

        if row is None:
            self._logger.debug("No durable token entry found.")
            return None

        stamp: str = row["stored_at"]

        # --- Decrypt ---
        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=row["nonce"])
            cipher.update(self._associated_data(stamp))
            plaintext: bytes = cipher.decrypt_and_verify(
                row["encrypted_value"], row["tag"],
            )
        except (ValueError, KeyError) as exc:
            self._logger.warning(
                "Decryption of the durable token failed (corrupted data or "
                "machine identity changed): %s",
                exc,
            )
            return None
        except OSError as exc:
            self._logger.warning("Token key derivation failed: %s", exc)
            return None

        # --- Deserialize ---
        try:
            stored_at: datetime = datetime.fromisoformat(stamp)
            if stored_at.tzinfo is None:
                stored_at = stored_at.replace(tzinfo=timezone.utc)
            return StoredToken(token=plaintext.decode("utf-8"), stored_at=stored_at)
        except (UnicodeDecodeError, ValueError) as exc:
            self._logger.warning("Durable token entry is malformed: %s", exc)
            return None

    def remove(self) -> None:
        """Delete the durable entry.  Safe to call when none exists."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    "DELETE FROM local_storage WHERE key = ?",
                    (self._key_name,),
                )
                self._db.sqlite.commit()
            self._logger.debug("Durable token entry '%s' removed.", self._key_name)
        except Exception as exc:
            self._logger.error(
                "Failed to remove the durable token entry: %s", exc,
            )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _associated_data(self, stamp: str) -> bytes:
        return f"{self._key_name}|{stamp}".encode("utf-8")

    def _derive_key(self) -> bytes:
        """Derive (once per instance) the 256-bit AES key.

        Key material is ``hostname:username``; the entropy comes from the
        per-machine random salt.  The key is deterministic for a given
        (hostname, OS user, salt) triple and is never written to disk.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.
        """
        with self._key_lock:
            if self._key is None:
                password: str = f"{socket.gethostname()}:{getpass.getuser()}"
                self._key = PBKDF2(
                    password=password,
                    salt=self._get_or_create_salt(),
                    dkLen=self._KEY_LENGTH,
                    count=self._PBKDF2_ITERATIONS,
                    hmac_hash_module=SHA256,
                )
            return self._key

    def _restrict_windows_acl(self, file_path: Path) -> None:
        """Restrict *file_path* to the current user (``chmod 0o600`` on NTFS)."""
        try:
            result: subprocess.CompletedProcess[bytes] = subprocess.run(
                [
                    "icacls",
                    str(file_path),
                    "/inheritance:r",
                    "/grant:r",
                    f"{getpass.getuser()}:F",
                ],
                capture_output=True,
                check=False,
                timeout=10,
            )
            if result.returncode != 0:
                self._logger.warning(
                    "icacls returned non-zero exit code %d for '%s': %s",
                    result.returncode,
                    file_path,
                    result.stderr.decode("utf-8", errors="replace").strip(),
                )
        except (OSError, subprocess.SubprocessError) as exc:
            self._logger.warning(
                "Failed to set Windows ACLs on '%s': %s", file_path, exc,
            )

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine random salt, creating it on first use.

        Raises
        ------
        OSError
            If the salt file cannot be read or written.
        """
        salt_path: Path = Path.home() / self._salt_file_name
        if salt_path.exists():
            data: bytes = salt_path.read_bytes()
            if len(data) == self._SALT_LENGTH:
                return data
            # Wrong length: regenerate.  Existing entries become unreadable.
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.",
                len(data),
            )
        salt: bytes = os.urandom(self._SALT_LENGTH)
        salt_path.write_bytes(salt)

        if platform.system() == "Windows":
            self._restrict_windows_acl(salt_path)
        else:
            salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Per-machine token salt created at %s.", salt_path)
        return salt
