"""
Token store — reads and writes the persisted credential.

The credential lives in a single JSON document. Optionally the document is
encrypted with Fernet using a key derived from the hostname and a salt kept
next to the token file, so a copied token file is useless on another machine.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import socket
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

if TYPE_CHECKING:
    from exactfetch.auth.oauth2 import Credential

logger = logging.getLogger("exactfetch.auth.store")


# ---------------------------------------------------------------------------
# Encryption helpers
# ---------------------------------------------------------------------------


def _derive_key(salt_file: Path) -> bytes:
    """Derive a Fernet key from the hostname and a per-install salt."""
    if salt_file.exists():
        salt = salt_file.read_bytes()
    else:
        salt = os.urandom(16)
        salt_file.parent.mkdir(parents=True, exist_ok=True)
        salt_file.write_bytes(salt)
        salt_file.chmod(0o600)

    password = socket.gethostname().encode() + b"exactfetch-v1"

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=480000,
    )
    return base64.urlsafe_b64encode(kdf.derive(password))


class TokenStore:
    """Persists one credential as a JSON document.

    Usage::

        store = TokenStore(Path("~/.exactfetch/tokens.json").expanduser())
        credential = store.load()      # None when nothing is stored
        store.save(credential)
        store.clear()
    """

    def __init__(self, path: Path, *, encrypt: bool = False) -> None:
        self.path = Path(path).expanduser()
        self.encrypt = encrypt

    @property
    def _salt_file(self) -> Path:
        return self.path.parent / ".key_salt"

    def _fernet(self) -> Fernet:
        return Fernet(_derive_key(self._salt_file))

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Credential | None:
        """Load the stored credential, or None when absent or unreadable."""
        from exactfetch.auth.oauth2 import Credential

        if not self.path.exists():
            return None

        content = self.path.read_text()

        if self.encrypt and not content.lstrip().startswith("{"):
            try:
                content = self._fernet().decrypt(content.encode()).decode()
            except InvalidToken:
                logger.warning("Cannot decrypt token file %s; ignoring it", self.path)
                return None

        try:
            data = json.loads(content)
            credential = Credential.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Failed to load token file %s: %s", self.path, e)
            return None

        logger.debug("Loaded credential from %s", self.path)
        return credential

    def save(self, credential: Credential) -> None:
        """Write the credential, replacing any previous document."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        content = json.dumps(credential.to_dict(), indent=2)
        if self.encrypt:
            content = self._fernet().encrypt(content.encode()).decode()

        self.path.write_text(content)
        # Restrict file permissions to owner only
        self.path.chmod(0o600)
        logger.debug("Saved credential to %s", self.path)

    def clear(self) -> bool:
        """Delete the stored credential.

        Returns:
            True if a file was deleted, False if nothing was stored.
        """
        if self.path.exists():
            self.path.unlink()
            logger.info("Deleted token file %s", self.path)
            return True
        return False
