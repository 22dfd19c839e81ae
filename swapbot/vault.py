"""
Key Vault - Encrypted Secret Custody
====================================
Stores the private keys of the swap wallets encrypted under an operator
password.

Security Features:
- PBKDF2-HMAC-SHA256 key derivation
- Fernet (AES-128-CBC + HMAC) encryption, unique salt per secret
- Password verified against a salted one-way hash before any decryption
- The password itself is never persisted
- Reads and writes of the store are serialized
"""

import hmac
import json
import base64
import secrets
import threading
from datetime import datetime
from typing import Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .storage import KeyValueStore
from .utils import (
    logger,
    normalize_private_key,
    ConfigurationError,
    WeakPasswordError,
    WrongPasswordError,
    NoStoredSecretsError,
    NoDecryptableSecretsError,
)


STORAGE_KEY_ENCRYPTED_PKS = "swapbot-encrypted-pks"
STORAGE_KEY_PASSWORD_HASH = "swapbot-password-hash"

MIN_PASSWORD_LENGTH = 6


class KeyVault:
    """
    Password-protected store for a list of private keys.

    Persisted layout (both values JSON encoded):
        swapbot-password-hash  -> {"salt", "hash", "iterations", "created"}
        swapbot-encrypted-pks  -> [{"salt", "ciphertext"}, ...]
    """

    # OWASP recommended minimum for PBKDF2-HMAC-SHA256
    KDF_ITERATIONS = 480_000

    def __init__(self, store: KeyValueStore, iterations: Optional[int] = None):
        self.store = store
        self.iterations = iterations or self.KDF_ITERATIONS
        self._lock = threading.Lock()

    def _derive(self, password: str, salt: bytes, iterations: int) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=iterations,
        )
        return kdf.derive(password.encode())

    def _fernet(self, password: str, salt: bytes, iterations: int) -> Fernet:
        key = base64.urlsafe_b64encode(self._derive(password, salt, iterations))
        return Fernet(key)

    def _hash_password(self, password: str) -> Dict:
        salt = secrets.token_bytes(16)
        digest = self._derive(password, salt, self.iterations)
        return {
            "salt": base64.b64encode(salt).decode(),
            "hash": digest.hex(),
            "iterations": self.iterations,
            "created": datetime.now().isoformat(),
        }

    def _encrypt_secret(self, secret: str, password: str) -> Dict:
        salt = secrets.token_bytes(16)
        token = self._fernet(password, salt, self.iterations).encrypt(secret.encode())
        return {
            "salt": base64.b64encode(salt).decode(),
            "ciphertext": token.decode(),
            "iterations": self.iterations,
        }

    def _decrypt_secret(self, record: Dict, password: str) -> str:
        salt = base64.b64decode(record["salt"])
        iterations = int(record.get("iterations", self.iterations))
        plain = self._fernet(password, salt, iterations).decrypt(record["ciphertext"].encode())
        return normalize_private_key(plain.decode())

    @property
    def is_configured(self) -> bool:
        """True when both a password hash and ciphertexts are stored."""
        with self._lock:
            return (
                self.store.get(STORAGE_KEY_PASSWORD_HASH) is not None
                and self.store.get(STORAGE_KEY_ENCRYPTED_PKS) is not None
            )

    @property
    def stored_count(self) -> int:
        with self._lock:
            raw = self.store.get(STORAGE_KEY_ENCRYPTED_PKS)
        return len(json.loads(raw)) if raw else 0

    def encrypt_and_store(self, secret_list: List[str], password: str) -> None:
        """
        Encrypt and persist secrets, replacing anything stored before.

        Args:
            secret_list: Private keys (0x-prefixed hex)
            password: Encryption password (min 6 characters)

        Raises:
            WeakPasswordError: password too short
            ConfigurationError: empty list or malformed key
        """
        if password is None or len(password) < MIN_PASSWORD_LENGTH:
            raise WeakPasswordError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if not secret_list:
            raise ConfigurationError("At least one private key is required")

        normalized = [normalize_private_key(s) for s in secret_list]

        password_hash = self._hash_password(password)
        records = [self._encrypt_secret(s, password) for s in normalized]

        with self._lock:
            self.store.set_many({
                STORAGE_KEY_ENCRYPTED_PKS: json.dumps(records),
                STORAGE_KEY_PASSWORD_HASH: json.dumps(password_hash),
            })

        logger.info(f"Encrypted and stored {len(records)} private key(s)")

    def verify_and_decrypt(self, password: str) -> List[str]:
        """
        Verify the password and decrypt every stored secret.

        Ciphertexts that fail to decrypt are skipped with a warning.

        Raises:
            NoStoredSecretsError: vault is empty
            WrongPasswordError: password does not match the stored hash
            NoDecryptableSecretsError: no ciphertext could be decrypted
        """
        with self._lock:
            raw_hash = self.store.get(STORAGE_KEY_PASSWORD_HASH)
            raw_records = self.store.get(STORAGE_KEY_ENCRYPTED_PKS)

            if not raw_hash or not raw_records:
                raise NoStoredSecretsError("No encrypted keys stored")

            stored = json.loads(raw_hash)
            candidate = self._derive(
                password or "",
                base64.b64decode(stored["salt"]),
                int(stored.get("iterations", self.iterations)),
            )
            if not hmac.compare_digest(candidate.hex(), stored["hash"]):
                raise WrongPasswordError("Wrong password")

            decrypted: List[str] = []
            for index, record in enumerate(json.loads(raw_records)):
                try:
                    decrypted.append(self._decrypt_secret(record, password))
                except (InvalidToken, KeyError, ValueError, TypeError, ConfigurationError) as e:
                    logger.warning(f"Skipping stored key #{index + 1}: could not decrypt ({type(e).__name__})")

        if not decrypted:
            raise NoDecryptableSecretsError("None of the stored keys could be decrypted")

        logger.info(f"Decrypted {len(decrypted)} private key(s)")
        return decrypted

    def clear(self) -> None:
        """Irreversibly discard the stored hash and ciphertexts."""
        with self._lock:
            self.store.delete(STORAGE_KEY_ENCRYPTED_PKS)
            self.store.delete(STORAGE_KEY_PASSWORD_HASH)
        logger.info("Encrypted keys cleared")
