"""Master key management and authenticated encryption of credential bundles.

Credential bundles are sealed with AES-256-GCM under a 32-byte master key
that is generated on first use and stored hex-encoded in a file readable
only by its owner (mode 0600). The key is never derived from anything else
and there is no escrow: if the key file is lost or replaced, every bundle
sealed under it becomes permanently undecryptable and must be re-entered.
"""

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cloudcost.core.config import settings
from cloudcost.core.exceptions import MasterKeyError

logger = structlog.get_logger()

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


@dataclass(frozen=True)
class SealedSecret:
    """Ciphertext, nonce and authentication tag stored as separate columns."""

    ciphertext: bytes
    nonce: bytes
    tag: bytes


def _read_master_key(key_file: Path) -> bytes:
    raw = key_file.read_text(encoding="utf-8").strip()
    try:
        key = bytes.fromhex(raw)
    except ValueError as e:
        raise MasterKeyError(f"Master key file {key_file} is not valid hex") from e
    if len(key) != KEY_SIZE:
        raise MasterKeyError(
            f"Master key file {key_file} has wrong length",
            {"expected": KEY_SIZE, "actual": len(key)},
        )
    return key


def load_or_create_master_key(key_file: Path) -> bytes:
    """
    Read the master key, generating and persisting it on first use.

    A new key is written to a private temporary file and hard-linked into
    place, so the key file only ever appears complete. When another process
    creates it first, that process's key is used.

    Args:
        key_file: Location of the hex-encoded key file

    Returns:
        The 32-byte master key

    Raises:
        MasterKeyError: If an existing key file is malformed
    """
    key_file = Path(key_file).expanduser()
    try:
        return _read_master_key(key_file)
    except FileNotFoundError:
        pass

    key_file.parent.mkdir(parents=True, exist_ok=True)
    key = os.urandom(KEY_SIZE)
    fd, tmp_path = tempfile.mkstemp(dir=key_file.parent, prefix=".encryption-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(key.hex())
        os.chmod(tmp_path, 0o600)
        os.link(tmp_path, key_file)
    except FileExistsError:
        logger.info("vault.master_key_created_concurrently", key_file=str(key_file))
        return _read_master_key(key_file)
    finally:
        os.unlink(tmp_path)

    logger.info("vault.master_key_created", key_file=str(key_file))
    return key


class CredentialEncryption:
    """Seal and open credential secret maps with AES-256-GCM."""

    def __init__(self, key_file: Path | None = None, key: bytes | None = None):
        """
        Initialize the cipher.

        Args:
            key_file: Master key location, defaults to settings.ENCRYPTION_KEY_FILE
            key: Raw key bytes, bypassing the key file entirely
        """
        if key is not None and len(key) != KEY_SIZE:
            raise MasterKeyError("Master key must be 32 bytes")
        self.key_file = Path(key_file or settings.ENCRYPTION_KEY_FILE)
        self._key = key
        self._lock = threading.Lock()

    @property
    def key(self) -> bytes:
        """Master key, loaded lazily so importing never touches the filesystem."""
        if self._key is None:
            with self._lock:
                if self._key is None:
                    self._key = load_or_create_master_key(self.key_file)
        return self._key

    def encrypt(self, secrets: dict[str, Any], associated_data: str) -> SealedSecret:
        """
        Encrypt a secret map.

        Args:
            secrets: Secret key/value map
            associated_data: Plaintext bound to the ciphertext (the provider)

        Returns:
            Sealed secret with separate ciphertext, nonce and tag
        """
        nonce = os.urandom(NONCE_SIZE)
        plaintext = json.dumps(secrets, ensure_ascii=False).encode("utf-8")
        sealed = AESGCM(self.key).encrypt(nonce, plaintext, associated_data.encode("utf-8"))
        return SealedSecret(ciphertext=sealed[:-TAG_SIZE], nonce=nonce, tag=sealed[-TAG_SIZE:])

    def decrypt(self, sealed: SealedSecret, associated_data: str) -> dict[str, Any]:
        """
        Decrypt a sealed secret map.

        Args:
            sealed: Stored ciphertext, nonce and tag
            associated_data: The same plaintext passed to encrypt

        Returns:
            Decrypted secret map

        Raises:
            cryptography.exceptions.InvalidTag: If authentication fails
        """
        if len(sealed.nonce) != NONCE_SIZE or len(sealed.tag) != TAG_SIZE:
            raise InvalidTag()
        plaintext = AESGCM(self.key).decrypt(
            sealed.nonce,
            sealed.ciphertext + sealed.tag,
            associated_data.encode("utf-8"),
        )
        return json.loads(plaintext.decode("utf-8"))


# Global encryption instance
credential_encryption = CredentialEncryption()
