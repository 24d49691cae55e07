from __future__ import annotations

from typing import Any

import httpx

from auth.token_store import TokenStore

from .constants import DEFAULT_HTTP_TIMEOUT, DEFAULT_RELAY_URL, LOGGER


class NotAuthenticatedError(RuntimeError):
    def __init__(self, message: str = "No access token stored; run the login command first.") -> None:
        super().__init__(message)


class RelayRequestError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PlayerClient:
    """Calls the relay's passthrough endpoints with the stored access token."""

    def __init__(
        self,
        token_store: TokenStore,
        *,
        relay_url: str = DEFAULT_RELAY_URL,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        self.token_store = token_store
        self._own_client = client is None
        self._client = client or httpx.Client(base_url=relay_url.rstrip("/"), timeout=timeout)

    def __enter__(self) -> "PlayerClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._own_client:
            self._client.close()

    def _get(self, path: str, key: str) -> Any:
        token = self.token_store.get_token()
        if not token:
            raise NotAuthenticatedError()

        try:
            response = self._client.get(path, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as error:
            raise RelayRequestError(f"Relay request {path} failed: {error}") from error

        if response.status_code >= 400:
            raise RelayRequestError(
                f"Relay request {path} failed with status {response.status_code}.",
                status_code=response.status_code,
            )
        LOGGER.debug("Relay response %s -> %s", path, response.status_code)
        try:
            payload = response.json()
        except ValueError as error:
            raise RelayRequestError(f"Relay response for {path} was not valid JSON.") from error
        if not isinstance(payload, dict):
            raise RelayRequestError(f"Relay response for {path} must be a JSON object.")
        return payload.get(key)

    def me(self) -> Any:
        return self._get("/me", "user")

    def currently_playing(self) -> Any:
        return self._get("/currently-listening-to", "listeningTo")

    def play_next(self) -> Any:
        return self._get("/play-next", "listeningTo")

    def play_previous(self) -> Any:
        return self._get("/play-previous", "listeningTo")

    def pause(self) -> Any:
        return self._get("/pause-playback", "listeningTo")
