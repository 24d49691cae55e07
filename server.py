from __future__ import annotations

import contextlib
import os

from starlette.applications import Starlette

from auth.oauth_server import RelayServer
from controller.constants import APP_VERSION, DEFAULT_HTTP_TIMEOUT, DEFAULT_LISTENER_URL, LOGGER
from controller.env import get_env_float, get_env_int, load_env, setup_logging, validate_env
from controller.http import build_api_client
from controller.player_routes import PlayerRoutes, extract_bearer_token, health_routes
from controller.spotify_api import SpotifyAPI

__all__ = [
    "APP_VERSION",
    "RelayServer",
    "PlayerRoutes",
    "SpotifyAPI",
    "extract_bearer_token",
    "load_env",
    "setup_logging",
    "validate_env",
    "build_app",
    "create_app",
    "main",
]


def build_app(relay: RelayServer, api: SpotifyAPI) -> Starlette:
    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        del app
        yield
        await api.aclose()

    routes = [*health_routes(), *relay.routes(), *PlayerRoutes(api).routes()]
    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.relay = relay
    app.state.api = api
    return app


def create_app() -> Starlette:
    load_env()
    debug_enabled = setup_logging()
    validate_env()

    timeout = get_env_float("SPOTIFY_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)
    scopes = os.getenv("SPOTIFY_SCOPES", "").split() or None

    relay = RelayServer(
        client_id=os.getenv("SPOTIFY_CLIENT_ID", "").strip(),
        client_secret=os.getenv("SPOTIFY_CLIENT_SECRET", "").strip(),
        redirect_uri=os.getenv("SPOTIFY_REDIRECT_URL", "").strip(),
        listener_url=os.getenv("LOCAL_LISTENER_URL", DEFAULT_LISTENER_URL),
        scopes=scopes,
        pending_auth_ttl_seconds=get_env_int("PENDING_AUTH_TTL_SECONDS", 600),
        http_timeout=timeout,
    )
    api = SpotifyAPI(build_api_client(timeout=timeout, debug=debug_enabled))
    return build_app(relay, api)


def main() -> None:
    import uvicorn

    host = os.getenv("RELAY_HOST", "127.0.0.1")
    port = get_env_int("RELAY_PORT", 3000)
    app = create_app()
    LOGGER.info("Listening on %s:%s", host, port)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
