"""
Cryptography helpers.

- Symmetric encryption of the persisted session bundle (Fernet)
- Per-request signatures for local device calls (HMAC-MD5)
- Random device identities
"""

import hashlib
import hmac
import logging
import uuid

from cryptography.fernet import Fernet, InvalidToken

from tunerbridge.utils.file_store import FileStore

logger = logging.getLogger(__name__)


class SessionCipher:
    """
    Encrypts and decrypts the session bundle with a per-install key.

    The key is created on first use and stored next to the session file.
    """

    def __init__(self, store: FileStore, key_file: str):
        self._store = store
        self._key_file = key_file
        self._fernet: Fernet | None = None

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            if self._store.exists(self._key_file):
                key = self._store.read(self._key_file).strip()
            else:
                key = Fernet.generate_key()
                self._store.write(self._key_file, key)
                logger.info(f"Created new session key at {self._store.path(self._key_file)}")
            self._fernet = Fernet(key)
        return self._fernet

    def encrypt(self, data: bytes) -> bytes:
        return self._get_fernet().encrypt(data)

    def decrypt(self, token: bytes) -> bytes:
        """
        Decrypt a token.

        Returns empty bytes when the token cannot be authenticated, so the
        caller's first-byte check treats it as corrupt.
        """
        try:
            return self._get_fernet().decrypt(token)
        except (InvalidToken, ValueError) as e:
            logger.debug(f"Session token rejected: {e!r}")
            return b""


def make_device_auth(
    method: str,
    path: str,
    body: str,
    date: str,
    hash_key: str,
    auth_key: str,
) -> str:
    """
    Build the ``Authorization`` header for a local device request.

    The signed message is ``METHOD\\npath\\nmd5(body)\\ndate``; the body digest
    is empty for requests without a body.
    """
    body_md5 = hashlib.md5(body.encode("utf-8")).hexdigest() if body else ""
    message = f"{method}\n{path}\n{body_md5}\n{date}"
    signature = hmac.new(hash_key.encode("utf-8"), message.encode("utf-8"), hashlib.md5).hexdigest()
    return f"tablo:{auth_key}:{signature}"


def new_device_uuid() -> str:
    return str(uuid.uuid4())
