from __future__ import annotations

import enum
from dataclasses import dataclass


@dataclass
class PendingAuthorization:
    state: str
    created_at: float

    def is_expired(self, now: float, ttl_seconds: int) -> bool:
        return now - self.created_at > ttl_seconds


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


class HandshakeOutcome(str, enum.Enum):
    STATE_MISMATCH = "state_mismatch"
    ACCESS_DENIED = "access_denied"
    EXCHANGE_FAILED = "invalid_token"
    TOKEN_ISSUED = "token_issued"
