from __future__ import annotations

import base64
import hashlib
import hmac
import json


def derive_key(client_secret: str) -> str:
    """Derive a stable cookie signing key from the Spotify client secret."""
    return hashlib.sha256(f"spotify-controller:{client_secret}".encode()).hexdigest()


def encode(payload: dict, key: str) -> str:
    data = json.dumps(payload, separators=(",", ":")).encode()
    data_b64 = base64.urlsafe_b64encode(data).rstrip(b"=").decode()
    sig = hmac.new(key.encode(), data, hashlib.sha256).digest()
    sig_b64 = base64.urlsafe_b64encode(sig).rstrip(b"=").decode()
    return f"{data_b64}.{sig_b64}"


def decode(token: str, key: str) -> dict:
    parts = token.split(".", 1)
    if len(parts) != 2:
        raise RuntimeError("Invalid token format.")
    data_b64, sig_b64 = parts
    try:
        data = base64.urlsafe_b64decode(data_b64 + "==")
        actual_sig = base64.urlsafe_b64decode(sig_b64 + "==")
    except ValueError as error:
        raise RuntimeError("Invalid token encoding.") from error
    expected_sig = hmac.new(key.encode(), data, hashlib.sha256).digest()
    if not hmac.compare_digest(expected_sig, actual_sig):
        raise RuntimeError("Token signature verification failed.")
    payload = json.loads(data)
    if not isinstance(payload, dict):
        raise RuntimeError("Token payload must be a JSON object.")
    return payload
