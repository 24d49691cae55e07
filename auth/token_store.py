from __future__ import annotations

import json
import os
import tempfile
import urllib.parse
from abc import ABC, abstractmethod
from pathlib import Path

ACCESS_TOKEN_KEY = "spotify-controller-access-token"
REFRESH_TOKEN_KEY = "spotify-controller-refresh-token"


def normalize_token(raw: str) -> str:
    """Recover the bare access token from a relayed ``access_token=...`` payload.

    A value without an ``access_token`` pair is treated as an already bare token.
    """
    candidate = raw.strip().lstrip("?")
    if "=" not in candidate:
        return candidate

    pairs = dict(urllib.parse.parse_qsl(candidate, keep_blank_values=True))
    token = pairs.get("access_token")
    if token is None:
        return candidate
    return token.strip()


class TokenStore(ABC):
    @abstractmethod
    def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError

    def set_token(self, raw: str) -> str:
        token = normalize_token(raw)
        if not token:
            raise ValueError("Cannot store an empty access token.")
        self.set(ACCESS_TOKEN_KEY, token)
        return token

    def get_token(self) -> str | None:
        return self.get(ACCESS_TOKEN_KEY)

    def set_refresh_token(self, value: str) -> None:
        self.set(REFRESH_TOKEN_KEY, value)

    def get_refresh_token(self) -> str | None:
        return self.get(REFRESH_TOKEN_KEY)

    def clear(self) -> None:
        self.delete(ACCESS_TOKEN_KEY)
        self.delete(REFRESH_TOKEN_KEY)


class MemoryTokenStore(TokenStore):
    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class FileTokenStore(TokenStore):
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> str | None:
        value = self._read_all().get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise RuntimeError(f"Token store value for {key!r} must be a string.")
        return value

    def set(self, key: str, value: str) -> None:
        all_values = self._read_all()
        all_values[key] = value
        self._write_all(all_values)

    def delete(self, key: str) -> None:
        all_values = self._read_all()
        if all_values.pop(key, None) is not None:
            self._write_all(all_values)

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Token store file is invalid; expected top-level JSON object.")
        return raw

    def _write_all(self, payload: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
