"""Caller identity and API key helpers."""

import hashlib
import secrets
from dataclasses import dataclass

from testintake.models.user import UserRole

API_KEY_PREFIX = "ti_sk_"


@dataclass(frozen=True)
class Caller:
    """The authenticated principal behind a request."""

    id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def generate_api_key() -> str:
    """Generate a raw API key like ti_sk_XXXXXXXX."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(24)}"


def hash_key(raw_key: str) -> str:
    """Hash an API key with SHA-256."""
    return hashlib.sha256(raw_key.encode()).hexdigest()
