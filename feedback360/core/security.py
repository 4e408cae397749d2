from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Protocol

from passlib.context import CryptContext

CREDENTIAL_CHARSET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz23456789"
CREDENTIAL_LENGTH = 10
FALLBACK_CREDENTIAL = "Feedback@2026!"
REDACTED_CREDENTIAL = "omitted for privacy"
DEFAULT_HASH_ROUNDS = 12


class HasEmail(Protocol):
    email: str


@dataclass(slots=True)
class CredentialService:
    """Deterministic, recomputable login credentials for subjects and evaluators.

    The plaintext is derived from the employee email with HMAC-SHA256 so it
    can be regenerated for display later. Only a bcrypt hash, salted per
    record, is stored.
    """

    secret: str
    hash_rounds: int = DEFAULT_HASH_ROUNDS
    context: CryptContext = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=self.hash_rounds)

    def generate(self, email: str | None) -> str:
        if not email:
            return FALLBACK_CREDENTIAL

        digest = hmac.new(
            self.secret.encode("utf-8"),
            email.strip().lower().encode("utf-8"),
            hashlib.sha256,
        ).digest()

        chars: list[str] = []
        for i in range(CREDENTIAL_LENGTH):
            index = int.from_bytes(digest[i * 2 : i * 2 + 2], "little") % len(CREDENTIAL_CHARSET)
            chars.append(CREDENTIAL_CHARSET[index])
            if i == 3:
                chars.append("!")
            if i == 7:
                chars.append("@")
        return "".join(chars)

    def hash(self, credential: str) -> str:
        return self.context.hash(credential)

    def verify(self, credential: str, stored_hash: str | None) -> bool:
        if not stored_hash:
            return False
        try:
            return self.context.verify(credential, stored_hash)
        except ValueError:
            # not a bcrypt hash
            return False

    def issue(self, email: str | None) -> str:
        """Return the stored hash for a freshly generated credential."""
        return self.hash(self.generate(email))

    def is_generated_secret(self, email: str | None, stored_hash: str | None) -> bool:
        return self.verify(self.generate(email), stored_hash)

    def display_for(self, holder: HasEmail, stored_hash: str | None) -> str:
        """Plaintext credential while it is still the generated one, else a placeholder."""
        if self.is_generated_secret(holder.email, stored_hash):
            return self.generate(holder.email)
        return REDACTED_CREDENTIAL


def get_credential_service() -> CredentialService:
    from feedback360.core.settings import get_settings

    settings = get_settings()
    return CredentialService(secret=settings.credential_secret, hash_rounds=settings.credential_hash_rounds)
