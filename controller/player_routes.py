from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from .constants import APP_VERSION, LOGGER
from .spotify_api import SpotifyAPI, SpotifyAPIError


def extract_bearer_token(authorization_header: str | None) -> str | None:
    if not authorization_header:
        return None
    scheme, _, token = authorization_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class PlayerRoutes:
    """Passthrough endpoints that forward one bearer-authenticated Spotify call.

    A request without a usable bearer token gets the null-shaped payload
    (``{"user": null}`` or ``{"listeningTo": null}``) with a 200 status.
    """

    def __init__(self, api: SpotifyAPI) -> None:
        self.api = api

    def routes(self) -> list[Route]:
        return [
            Route("/me", self._handle_me, methods=["GET"]),
            Route("/currently-listening-to", self._handle_currently_listening, methods=["GET"]),
            Route("/play-next", self._handle_play_next, methods=["GET"]),
            Route("/play-previous", self._handle_play_previous, methods=["GET"]),
            Route("/pause-playback", self._handle_pause, methods=["GET"]),
        ]

    async def _handle_me(self, request: Request) -> Response:
        token = extract_bearer_token(request.headers.get("authorization"))
        if token is None:
            return JSONResponse({"user": None})

        try:
            profile = await self.api.get_profile(token)
        except SpotifyAPIError as error:
            return self._upstream_error(error)
        return JSONResponse({"user": profile})

    async def _handle_currently_listening(self, request: Request) -> Response:
        return await self._listening_to(request, None)

    async def _handle_play_next(self, request: Request) -> Response:
        return await self._listening_to(request, self.api.skip_to_next)

    async def _handle_play_previous(self, request: Request) -> Response:
        return await self._listening_to(request, self.api.skip_to_previous)

    async def _handle_pause(self, request: Request) -> Response:
        return await self._listening_to(request, self.api.pause)

    async def _listening_to(self, request: Request, action) -> Response:
        token = extract_bearer_token(request.headers.get("authorization"))
        if token is None:
            return JSONResponse({"listeningTo": None})

        try:
            if action is not None:
                await action(token)
            current = await self.api.get_currently_playing(token)
        except SpotifyAPIError as error:
            return self._upstream_error(error)
        return JSONResponse({"listeningTo": current})

    def _upstream_error(self, error: SpotifyAPIError) -> Response:
        LOGGER.warning("Spotify API passthrough failed: %s", error)
        return JSONResponse(
            {"error": "upstream_error", "status": error.status_code},
            status_code=502,
        )


def health_routes() -> list[Route]:
    async def index_route(request: Request) -> Response:
        del request
        return PlainTextResponse("hello")

    async def health_route(request: Request) -> Response:
        del request
        return JSONResponse({"status": "ok", "version": APP_VERSION})

    return [
        Route("/", index_route, methods=["GET"]),
        Route("/health", health_route, methods=["GET"]),
    ]
