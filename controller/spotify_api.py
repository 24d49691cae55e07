from __future__ import annotations

from typing import Any

import httpx

CURRENTLY_PLAYING_PATH = "/me/player/currently-playing"


class SpotifyAPIError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SpotifyAPI:
    """Thin wrapper around the Spotify Web API calls the relay forwards."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, token: str) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as error:
            raise SpotifyAPIError(f"Spotify API request failed: {error}") from error

        if response.status_code >= 400:
            raise SpotifyAPIError(
                f"Spotify API {method} {path} failed with status {response.status_code}.",
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def get_profile(self, token: str) -> Any:
        return await self._request("GET", "/me", token)

    async def get_currently_playing(self, token: str) -> Any:
        return await self._request("GET", CURRENTLY_PLAYING_PATH, token)

    async def skip_to_next(self, token: str) -> None:
        await self._request("POST", "/me/player/next", token)

    async def skip_to_previous(self, token: str) -> None:
        await self._request("POST", "/me/player/previous", token)

    async def pause(self, token: str) -> None:
        await self._request("PUT", "/me/player/pause", token)
