"""Field encryption, anonymous hashing, password hashing and CSRF tokens"""

import base64
import binascii
import hashlib
import hmac
import html
import os
import secrets
import time
from typing import Any, Callable, MutableMapping, Optional, Union

import structlog
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from argon2.low_level import Type
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from safetransit.config import settings
from safetransit.exceptions import ConfigurationError, FormatError, TamperError


logger = structlog.get_logger(__name__)

DEFAULT_SECRET = "change-me-in-production"
PLACEHOLDER_KEY = "K" * 32


def load_encryption_key(key: Union[str, bytes]) -> bytes:
    """
    Turn a configured key into 32 raw bytes.

    Accepts either exactly 32 raw bytes/characters or the base64 encoding
    of 32 bytes.

    Raises:
        ConfigurationError: If the key cannot be interpreted as 256 bits
    """
    raw = key.encode("utf-8") if isinstance(key, str) else bytes(key)
    if len(raw) == 32:
        return raw

    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""

    if len(decoded) != 32:
        raise ConfigurationError(
            "Encryption key must be 32 bytes or base64 of 32 bytes",
            details={"key_length": len(raw)}
        )
    return decoded


class CryptographyService:
    """
    Security primitives used by the reporting pipeline.

    - AES-256-GCM encryption of free-text fields
    - Salted SHA-256 anonymous hashes
    - Argon2id password hashing for administrator accounts
    - Session-scoped CSRF tokens, rotated after each successful validation
    - HTML escaping of user supplied strings
    """

    NONCE_LENGTH = 12
    TAG_LENGTH = 16
    DELIMITER = b"."

    def __init__(
        self,
        encryption_key: Optional[Union[str, bytes]] = None,
        anonymization_salt: Optional[str] = None,
        csrf_field_name: Optional[str] = None,
        csrf_lifetime_seconds: Optional[int] = None,
        password_hasher: Optional[PasswordHasher] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize CryptographyService

        Args:
            encryption_key: AES-256 key. If None, uses value from settings.
            anonymization_salt: Salt for anonymous hashes. If None, uses value from settings.
            csrf_field_name: Session key holding the CSRF token
            csrf_lifetime_seconds: Lifetime of a CSRF token
            password_hasher: Argon2 hasher (defaults to Argon2id parameters)
            clock: Returns the current time as epoch seconds
        """
        security = settings.security
        configured_key = encryption_key if encryption_key is not None else security.encryption_key
        self._key = load_encryption_key(configured_key)
        self._aead = AESGCM(self._key)

        self.salt = anonymization_salt if anonymization_salt is not None else security.anonymization_salt
        self.csrf_field_name = csrf_field_name or security.csrf_field_name
        self.csrf_lifetime_seconds = (
            csrf_lifetime_seconds if csrf_lifetime_seconds is not None
            else security.csrf_token_lifetime_seconds
        )
        self.password_hasher = password_hasher or PasswordHasher(type=Type.ID)
        self._clock = clock

        if configured_key == PLACEHOLDER_KEY:
            logger.warning(
                "encryption_using_placeholder_key",
                message="Using placeholder encryption key - change in production!"
            )
        if self.salt == DEFAULT_SECRET:
            logger.warning(
                "anonymization_using_default_salt",
                message="Using default salt - change in production!"
            )

        logger.info("cryptography_service_initialized")

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string with AES-256-GCM.

        Every call draws a fresh 96-bit nonce. The stored form is
        base64(b64(iv) "." b64(tag) "." b64(ciphertext)).

        Args:
            plaintext: Text to encrypt

        Returns:
            Encoded blob, or "" for empty input
        """
        if not plaintext:
            return ""

        iv = os.urandom(self.NONCE_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-self.TAG_LENGTH], sealed[-self.TAG_LENGTH:]

        joined = self.DELIMITER.join(
            base64.b64encode(part) for part in (iv, tag, ciphertext)
        )
        return base64.b64encode(joined).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """
        Decrypt a blob produced by encrypt().

        Args:
            blob: Encoded blob

        Returns:
            The plaintext, or "" for an empty blob

        Raises:
            FormatError: If the blob is not well formed
            TamperError: If the authentication tag does not verify
        """
        if not blob:
            return ""

        try:
            encoded = blob.encode("ascii")
        except UnicodeEncodeError:
            raise FormatError("Encrypted data contains non-ASCII characters")

        parts = self._strict_b64decode(encoded, "blob").split(self.DELIMITER)
        if len(parts) != 3:
            raise FormatError(
                "Encrypted data format is corrupted",
                details={"components": len(parts)}
            )

        iv, tag, ciphertext = (
            self._strict_b64decode(part, name)
            for part, name in zip(parts, ("iv", "tag", "ciphertext"))
        )

        if len(iv) != self.NONCE_LENGTH:
            raise FormatError("Invalid IV length", details={"length": len(iv)})
        if len(tag) != self.TAG_LENGTH:
            raise FormatError("Invalid tag length", details={"length": len(tag)})

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            logger.error("decryption_tag_mismatch")
            raise TamperError("Decryption failed. Data may have been tampered with.")

        return plaintext.decode("utf-8")

    @staticmethod
    def _strict_b64decode(value: bytes, part: str) -> bytes:
        """Decode base64, rejecting anything that is not the canonical encoding."""
        try:
            decoded = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise FormatError(f"Invalid base64 in {part}", details={"part": part})

        if base64.b64encode(decoded) != value:
            raise FormatError(f"Non-canonical base64 in {part}", details={"part": part})
        return decoded

    # ------------------------------------------------------------------
    # Anonymous identifiers
    # ------------------------------------------------------------------

    def generate_anonymous_hash(self, seed: str) -> str:
        """
        Hash a non-PII seed with the application salt using SHA-256

        The same seed always produces the same hash. Callers must only pass
        seed material that carries no submitter identity (for example a
        report id, the current time and a random value).

        Args:
            seed: Non-identifying seed material

        Returns:
            64-character hexadecimal hash
        """
        if not seed:
            raise ValueError("Anonymous hash seed must not be empty")

        salted_value = f"{seed}{self.salt}"
        return hashlib.sha256(salted_value.encode("utf-8")).hexdigest()

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, password: str) -> str:
        """Hash an administrator password with Argon2id."""
        return self.password_hasher.hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Check a password against an Argon2id hash."""
        try:
            return self.password_hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (VerificationError, InvalidHashError):
            logger.warning("password_hash_unverifiable")
            return False

    # ------------------------------------------------------------------
    # CSRF tokens
    # ------------------------------------------------------------------

    def generate_csrf_token(self, session: MutableMapping[str, Any]) -> str:
        """
        Return the session's CSRF token, issuing a new one if missing or expired.

        Args:
            session: Session-scoped storage

        Returns:
            The current token
        """
        entry = session.get(self.csrf_field_name)
        if not entry or entry.get("expires", 0) < self._clock():
            entry = {
                "token": secrets.token_hex(32),
                "expires": int(self._clock()) + self.csrf_lifetime_seconds,
            }
            session[self.csrf_field_name] = entry
        return entry["token"]

    def validate_csrf_token(self, session: MutableMapping[str, Any], token: str) -> bool:
        """
        Validate a submitted CSRF token against the session.

        The same token keeps validating until a validation succeeds; the
        token is then rotated.

        Args:
            session: Session-scoped storage
            token: Token sent with the request

        Returns:
            True if the token matched and was rotated
        """
        entry = session.get(self.csrf_field_name)
        if not entry:
            logger.warning("csrf_session_token_missing")
            return False

        if entry.get("expires", 0) < self._clock():
            logger.warning("csrf_token_expired")
            return False

        if not hmac.compare_digest(str(entry.get("token", "")), str(token or "")):
            logger.warning("csrf_token_mismatch")
            return False

        self.rotate_csrf_token(session)
        return True

    def rotate_csrf_token(self, session: MutableMapping[str, Any]) -> str:
        """Force expiry of the current token and issue a new one."""
        entry = session.get(self.csrf_field_name)
        if entry:
            session[self.csrf_field_name] = {**entry, "expires": 0}
        return self.generate_csrf_token(session)

    # ------------------------------------------------------------------
    # Sanitization
    # ------------------------------------------------------------------

    @staticmethod
    def sanitize_string(value: Optional[str]) -> str:
        """Trim and HTML-escape a string, including both quote styles."""
        if value is None:
            return ""
        return html.escape(str(value).strip(), quote=True)
