from __future__ import annotations

import time
from dataclasses import asdict

from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from auth import signed_token, spotify_oauth2
from auth.models import HandshakeOutcome, PendingAuthorization, TokenPair
from auth.state import generate_state, states_match
from auth.urls import append_query_params, join_url
from controller.constants import DEFAULT_LISTENER_URL, LOGGER

DEFAULT_SCOPES = [
    "user-read-private",
    "user-read-email",
    "playlist-modify-private",
    "user-read-currently-playing",
    "user-modify-playback-state",
    "user-read-playback-state",
    "streaming",
    "app-remote-control",
]

STATE_COOKIE = "spotify_auth_state"


class RelayServer:
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        listener_url: str = DEFAULT_LISTENER_URL,
        scopes: list[str] | None = None,
        pending_auth_ttl_seconds: int = 600,
        http_timeout: float = spotify_oauth2.DEFAULT_TIMEOUT,
        secure_cookies: bool | None = None,
        state_factory=generate_state,
        exchange_code_fn=spotify_oauth2.exchange_code,
        refresh_token_fn=spotify_oauth2.refresh_token,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.listener_url = listener_url.rstrip("/")
        self.scopes = scopes or list(DEFAULT_SCOPES)
        self.pending_auth_ttl_seconds = pending_auth_ttl_seconds
        self.http_timeout = http_timeout
        if secure_cookies is None:
            secure_cookies = redirect_uri.startswith("https://")
        self.secure_cookies = secure_cookies

        self._cookie_key = signed_token.derive_key(client_secret)
        self._state_factory = state_factory
        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn

    # -- pending authorization cookie -----------------------------------------

    def _encode_pending(self, pending: PendingAuthorization) -> str:
        return signed_token.encode(
            {"state": pending.state, "iat": pending.created_at},
            self._cookie_key,
        )

    def _decode_pending(self, raw: str | None) -> PendingAuthorization | None:
        if not raw:
            return None
        try:
            payload = signed_token.decode(raw, self._cookie_key)
        except (RuntimeError, ValueError):
            return None

        state = payload.get("state")
        created_at = payload.get("iat")
        if not isinstance(state, str) or not isinstance(created_at, (int, float)):
            return None
        return PendingAuthorization(state=state, created_at=float(created_at))

    # -- routes ----------------------------------------------------------------

    def routes(self) -> list[Route]:
        return [
            Route("/spotify-login", self._handle_login, methods=["GET"]),
            Route("/login", self._handle_login, methods=["GET"]),
            Route("/callback", self._handle_callback, methods=["GET"]),
            Route("/refresh_token", self._handle_refresh_token, methods=["GET"]),
        ]

    # -- handlers --------------------------------------------------------------

    async def _handle_login(self, request: Request) -> Response:
        del request
        pending = PendingAuthorization(state=self._state_factory(), created_at=time.time())

        authorize_url = spotify_oauth2.build_authorization_url(
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
            state=pending.state,
        )

        response = RedirectResponse(url=authorize_url, status_code=302)
        response.set_cookie(
            STATE_COOKIE,
            self._encode_pending(pending),
            max_age=self.pending_auth_ttl_seconds,
            httponly=True,
            secure=self.secure_cookies,
            samesite="lax",
        )
        LOGGER.info("Issued authorization redirect")
        return response

    async def _handle_callback(self, request: Request) -> Response:
        state = request.query_params.get("state")
        pending = self._decode_pending(request.cookies.get(STATE_COOKIE))

        if (
            pending is None
            or pending.is_expired(time.time(), self.pending_auth_ttl_seconds)
            or not states_match(pending.state, state)
        ):
            return self._finish_callback(HandshakeOutcome.STATE_MISMATCH)

        if request.query_params.get("error"):
            return self._finish_callback(HandshakeOutcome.ACCESS_DENIED)

        code = request.query_params.get("code")
        if not code:
            return self._finish_callback(HandshakeOutcome.EXCHANGE_FAILED)

        try:
            exchanged = await self._exchange_code_fn(
                client_id=self.client_id,
                client_secret=self.client_secret,
                code=code,
                redirect_uri=self.redirect_uri,
                timeout=self.http_timeout,
            )
        except Exception as error:
            LOGGER.warning("Authorization code exchange failed: %s", error)
            return self._finish_callback(HandshakeOutcome.EXCHANGE_FAILED)

        pair = TokenPair(
            access_token=exchanged.access_token,
            refresh_token=exchanged.refresh_token or "",
        )
        return self._finish_callback(HandshakeOutcome.TOKEN_ISSUED, asdict(pair))

    async def _handle_refresh_token(self, request: Request) -> Response:
        redirect = request.query_params.get("redirect", "").lower() in {"1", "true", "yes"}
        supplied_token = request.query_params.get("refresh_token")

        if not supplied_token:
            if redirect:
                return self._listener_redirect("/refresh_token", {"error": "invalid_request"})
            return self._error("invalid_request", "Missing refresh_token.", 400)

        try:
            refreshed = await self._refresh_token_fn(
                client_id=self.client_id,
                client_secret=self.client_secret,
                refresh_token=supplied_token,
                timeout=self.http_timeout,
            )
        except Exception as error:
            LOGGER.warning("Refresh token exchange failed: %s", error)
            if redirect:
                return self._listener_redirect("/refresh_token", {"error": "invalid_token"})
            return self._error("invalid_token", "Could not refresh the access token.", 502)

        if redirect:
            return self._listener_redirect(
                "/refresh_token", {"access_token": refreshed.access_token}
            )
        return JSONResponse({"access_token": refreshed.access_token})

    # -- helpers ---------------------------------------------------------------

    def _finish_callback(
        self,
        outcome: HandshakeOutcome,
        tokens: dict[str, str] | None = None,
    ) -> Response:
        LOGGER.info("Authorization callback finished outcome=%s", outcome.value)
        params = tokens if tokens is not None else {"error": outcome.value}
        response = self._listener_redirect("/auth", params)
        # The state is single use whatever the outcome.
        response.delete_cookie(STATE_COOKIE)
        return response

    def _listener_redirect(self, path: str, params: dict[str, str]) -> Response:
        url = append_query_params(join_url(self.listener_url, path), params)
        return RedirectResponse(url=url, status_code=302)

    def _error(self, code: str, description: str, status_code: int) -> Response:
        return JSONResponse(
            {"error": code, "error_description": description},
            status_code=status_code,
        )
