import time
import urllib.parse

import httpx
from starlette.testclient import TestClient

from auth.oauth_server import RelayServer
from auth.spotify_oauth2 import TokenResponse
from controller.spotify_api import SpotifyAPI
from server import build_app

LISTENER_URL = "http://localhost:54321"
REDIRECT_URI = "http://localhost:3000/callback"


class CallRecorder:
    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.calls: list[dict] = []
        self._result = result
        self._error = error

    async def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return self._result


def token_response(access_token: str = "AT1", refresh_token: str | None = "RT1") -> TokenResponse:
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=3600,
        expires_at=time.time() + 3600,
        scope="user-read-private",
    )


def _default_api_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(204, request=request)


def _build_relay(
    *,
    exchange_code_fn=None,
    refresh_token_fn=None,
    state_factory=None,
    api_handler=None,
    pending_auth_ttl_seconds: int = 600,
):
    exchange = exchange_code_fn or CallRecorder(token_response())
    refresh = refresh_token_fn or CallRecorder(token_response("AT2", None))

    kwargs = {}
    if state_factory is not None:
        kwargs["state_factory"] = state_factory

    relay = RelayServer(
        client_id="spotify-client",
        client_secret="spotify-secret",
        redirect_uri=REDIRECT_URI,
        listener_url=LISTENER_URL,
        pending_auth_ttl_seconds=pending_auth_ttl_seconds,
        exchange_code_fn=exchange,
        refresh_token_fn=refresh,
        **kwargs,
    )
    api_client = httpx.AsyncClient(
        base_url="https://api.spotify.com/v1",
        transport=httpx.MockTransport(api_handler or _default_api_handler),
    )
    app = build_app(relay, SpotifyAPI(api_client))
    return relay, TestClient(app), exchange, refresh


def _start_login(test_client: TestClient) -> str:
    response = test_client.get("/spotify-login", follow_redirects=False)
    location = response.headers["location"]
    return urllib.parse.parse_qs(urllib.parse.urlparse(location).query)["state"][0]


def _query(location: str) -> dict[str, list[str]]:
    return urllib.parse.parse_qs(urllib.parse.urlparse(location).query)
