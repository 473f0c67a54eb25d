"""Speech-API credential stores.

The transcription pipeline asks for the credential at call time, so a
token added while the engine runs is picked up on the next request.
Stores are read-only from the engine's point of view; the encrypted
store also exposes ``save``/``delete`` for the CLI and for tests.

Encrypted storage uses Fernet symmetric encryption (AES-128-CBC with
HMAC).  Keys are managed via environment variables and rotated with
``MultiFernet``.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Protocol, Union

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from core.config import CONFIG_DIR, SolverSettings

logger = logging.getLogger(__name__)

# Environment variable names for encryption keys
CREDENTIAL_KEY_ENV = "CHALLENGE_SOLVER_KEY"
CREDENTIAL_KEY_OLD_ENV = "CHALLENGE_SOLVER_KEY_OLD"  # For key rotation


class CredentialStore(Protocol):
    """Read-only lookup of the speech-API credential."""

    def get_credential(self) -> Optional[str]:
        ...


class SettingsCredentialStore:
    """Reads ``wit_ai_token`` from :class:`SolverSettings`."""

    def __init__(self, settings: SolverSettings) -> None:
        self.settings = settings

    def get_credential(self) -> Optional[str]:
        token = self.settings.wit_ai_token
        return token.strip() if token and token.strip() else None


class EncryptedCredentialStore:
    """Fernet-encrypted token file.

    Args:
        path: Location of the encrypted token.  Defaults to
            ``credentials.enc`` inside the project config directory.
        key: Primary Fernet key.  Falls back to ``CHALLENGE_SOLVER_KEY``.
        old_key: Previous key accepted for decryption only.  Falls back
            to ``CHALLENGE_SOLVER_KEY_OLD``.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        key: Optional[str] = None,
        old_key: Optional[str] = None,
    ) -> None:
        self.path = Path(path or CONFIG_DIR / "credentials.enc")
        self._fernet: Optional[Union[Fernet, MultiFernet]] = self._initialize_fernet(
            key or os.environ.get(CREDENTIAL_KEY_ENV),
            old_key or os.environ.get(CREDENTIAL_KEY_OLD_ENV),
        )

    @staticmethod
    def _initialize_fernet(
        primary_key: Optional[str], old_key: Optional[str],
    ) -> Optional[Union[Fernet, MultiFernet]]:
        """Build the cipher, with rotation when an old key is present.

        Returns:
            A ``Fernet`` or ``MultiFernet`` instance, or ``None`` when no
            usable key is configured.
        """
        if not primary_key:
            logger.debug("%s not set; encrypted credential store disabled", CREDENTIAL_KEY_ENV)
            return None
        try:
            keys = [Fernet(primary_key.encode())]
            if old_key:
                keys.append(Fernet(old_key.encode()))
                logger.info("Using key rotation with MultiFernet")
            if len(keys) > 1:
                return MultiFernet(keys)
            return keys[0]
        except Exception as e:
            logger.error("Failed to initialize credential encryption: %s", e)
            return None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def save(self, token: str) -> bool:
        """Encrypt and persist *token*.

        Returns:
            ``True`` if saved successfully, ``False`` otherwise.
        """
        if not self._fernet:
            logger.error("Encryption not initialized. Cannot save credential securely.")
            return False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_bytes(self._fernet.encrypt(token.encode("utf-8")))
            logger.debug("Saved encrypted credential to %s", self.path)
            return True
        except Exception as e:
            logger.error("Failed to save encrypted credential: %s", e)
            return False

    def get_credential(self) -> Optional[str]:
        if not self._fernet or not self.path.exists():
            return None
        try:
            token = self._fernet.decrypt(self.path.read_bytes()).decode("utf-8").strip()
            return token or None
        except InvalidToken:
            logger.error("Failed to decrypt credential at %s. Key may have changed.", self.path)
            return None
        except Exception as e:
            logger.error("Failed to load encrypted credential: %s", e)
            return None

    def rotate(self) -> bool:
        """Re-encrypt the stored token under the primary key."""
        if not isinstance(self._fernet, MultiFernet) or not self.path.exists():
            return False
        try:
            self.path.write_bytes(self._fernet.rotate(self.path.read_bytes()))
            logger.info("Rotated credential encryption key")
            return True
        except InvalidToken:
            logger.error("Cannot rotate credential: no configured key decrypts it")
            return False

    def delete(self) -> bool:
        try:
            if self.path.exists():
                self.path.unlink()
                return True
            return False
        except Exception as e:
            logger.error("Failed to delete credential file: %s", e)
            return False

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key for manual key creation."""
        return Fernet.generate_key().decode()


class ChainedCredentialStore:
    """Return the first credential any of *stores* provides."""

    def __init__(self, stores: List[CredentialStore]) -> None:
        self.stores = stores

    def get_credential(self) -> Optional[str]:
        for store in self.stores:
            credential = store.get_credential()
            if credential:
                return credential
        return None


def build_credential_store(settings: SolverSettings) -> ChainedCredentialStore:
    """Settings/env first, then the encrypted file."""
    return ChainedCredentialStore([
        SettingsCredentialStore(settings),
        EncryptedCredentialStore(settings.credential_file),
    ])
