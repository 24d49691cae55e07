from __future__ import annotations

import time
import urllib.parse
from dataclasses import dataclass

import httpx

SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"

DEFAULT_TIMEOUT = 5.0


class TokenRequestError(RuntimeError):
    """Raised when the Spotify token endpoint rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None
    expires_in: int
    expires_at: float
    scope: str
    token_type: str = "Bearer"

    def is_expired(self) -> bool:
        return time.time() >= self.expires_at

    @classmethod
    def from_payload(cls, payload: dict, *, require_refresh_token: bool = True) -> "TokenResponse":
        if not isinstance(payload, dict):
            raise TokenRequestError("Token response must be a JSON object.")

        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in", 3600)
        scope = payload.get("scope", "")
        token_type = payload.get("token_type", "Bearer")

        if not isinstance(access_token, str) or not access_token:
            raise TokenRequestError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise TokenRequestError("Token response refresh_token must be a string.")
        if require_refresh_token and not refresh_token:
            raise TokenRequestError("Token response missing refresh_token.")
        if not isinstance(expires_in, int):
            raise TokenRequestError("Token response expires_in must be an integer.")
        if not isinstance(scope, str):
            raise TokenRequestError("Token response scope must be a string.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_in=expires_in,
            expires_at=time.time() + expires_in,
            scope=scope,
            token_type=token_type if isinstance(token_type, str) else "Bearer",
        )


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
) -> str:
    query = {
        "response_type": "code",
        "client_id": client_id,
        "scope": " ".join(scopes),
        "redirect_uri": redirect_uri,
        "state": state,
    }
    return f"{SPOTIFY_AUTHORIZE_URL}?{urllib.parse.urlencode(query)}"


async def _token_request(
    payload: dict[str, str],
    *,
    client_id: str,
    client_secret: str,
    require_refresh_token: bool,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> TokenResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=timeout)

    try:
        response = await http_client.post(
            SPOTIFY_TOKEN_URL,
            data=payload,
            auth=httpx.BasicAuth(client_id, client_secret),
        )
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPStatusError as error:
        detail = error.response.text
        raise TokenRequestError(
            f"Token request failed with status {error.response.status_code}: {detail}",
            status_code=error.response.status_code,
        ) from error
    except httpx.HTTPError as error:
        raise TokenRequestError(f"Token request failed: {error}") from error
    except ValueError as error:
        raise TokenRequestError("Token response was not valid JSON.") from error
    finally:
        if own_client:
            await http_client.aclose()

    return TokenResponse.from_payload(body, require_refresh_token=require_refresh_token)


async def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> TokenResponse:
    return await _token_request(
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        },
        client_id=client_id,
        client_secret=client_secret,
        require_refresh_token=True,
        client=client,
        timeout=timeout,
    )


async def refresh_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> TokenResponse:
    return await _token_request(
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        },
        client_id=client_id,
        client_secret=client_secret,
        require_refresh_token=False,
        client=client,
        timeout=timeout,
    )
