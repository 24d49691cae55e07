from __future__ import annotations

import secrets
import string

STATE_ALPHABET = string.ascii_letters + string.digits
STATE_LENGTH = 16


def generate_state(length: int = STATE_LENGTH) -> str:
    """Return an unguessable alphanumeric value for the OAuth ``state`` parameter."""
    if length <= 0:
        raise ValueError("State length must be positive.")
    return "".join(secrets.choice(STATE_ALPHABET) for _ in range(length))


def states_match(expected: str | None, received: str | None) -> bool:
    if not expected or not received:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))
