from __future__ import annotations

import functools
import html
import http.server
import urllib.parse
import webbrowser
from dataclasses import dataclass

from auth.token_store import TokenStore
from auth.urls import append_query_params, join_url

from .constants import DEFAULT_LISTENER_PORT, DEFAULT_RELAY_URL, LOGGER

AUTH_PATH = "/auth"
REFRESH_PATH = "/refresh_token"

SUCCESS_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Spotify Controller</title></head>
<body>
<h1>{title}</h1>
<p>You can close this window and return to your editor.</p>
</body>
</html>
"""

ERROR_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Spotify Controller</title></head>
<body>
<h1>Something went wrong</h1>
<p>{message}</p>
<p>Close this window and start the login again from your editor.</p>
</body>
</html>
"""


@dataclass
class ListenerResult:
    success: bool
    error: str | None = None
    access_token: str | None = None


def parse_callback(path: str) -> tuple[str, dict[str, str]]:
    """Split a callback request path into its route and token parameters.

    Accepts the query form ``/auth?access_token=...`` as well as the payload
    placed directly in the path, ``/auth/access_token=...&refresh_token=...``.
    """
    parsed = urllib.parse.urlparse(path)
    route = parsed.path.rstrip("/") or "/"
    params = dict(urllib.parse.parse_qsl(parsed.query, keep_blank_values=True))

    prefix = f"{AUTH_PATH}/"
    if route.startswith(prefix):
        segment = urllib.parse.unquote(route[len(prefix):])
        route = AUTH_PATH
        for key, value in urllib.parse.parse_qsl(segment.lstrip("?"), keep_blank_values=True):
            params.setdefault(key, value)

    return route, params


class CallbackHandler(http.server.BaseHTTPRequestHandler):
    def __init__(self, *args, listener: "CallbackListener", **kwargs):
        self.listener = listener
        # Bounds the wait for the request line on an accepted connection.
        self.timeout = listener.timeout
        super().__init__(*args, **kwargs)

    def do_GET(self):
        route, params = parse_callback(self.path)

        if route not in self.listener.accepted_paths:
            self._finish(ListenerResult(False, error="unexpected_path"), "Unexpected callback path.")
            return

        if params.get("error"):
            error = params["error"]
            self._finish(ListenerResult(False, error=error), f"Spotify login failed: {error}")
            return

        access_token = params.get("access_token", "").strip()
        if not access_token:
            self._finish(ListenerResult(False, error="missing_token"), "No access token was received.")
            return

        try:
            stored = self.listener.token_store.set_token(access_token)
            refresh_token = params.get("refresh_token", "").strip()
            if refresh_token:
                self.listener.token_store.set_refresh_token(refresh_token)
        except (OSError, RuntimeError, ValueError) as error:
            LOGGER.error("Could not store access token: %s", error)
            self._finish(ListenerResult(False, error="store_failed"), "The access token could not be saved.")
            return

        title = "Auth was successful"
        if route == REFRESH_PATH:
            title = "Successfully refreshed access token"
        self._send_page(200, SUCCESS_PAGE.format(title=title))
        self.listener.result = ListenerResult(True, access_token=stored)

    def _finish(self, result: ListenerResult, message: str) -> None:
        LOGGER.warning("Callback listener rejected request: %s", result.error)
        self._send_page(400, ERROR_PAGE.format(message=html.escape(message)))
        self.listener.result = result

    def _send_page(self, status: int, body: str) -> None:
        payload = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(payload)
        self.wfile.flush()

    def log_message(self, format, *args):
        # Request lines carry the token in the query string.
        pass


class CallbackListener:
    """Single-shot local HTTP server that receives the relayed token.

    The socket is bound on entry, exactly one request is served, and the socket
    is closed afterwards on every path. Use it as a context manager or call
    :meth:`login` / :meth:`refresh`, which manage the lifetime themselves.
    """

    def __init__(
        self,
        token_store: TokenStore,
        *,
        relay_url: str = DEFAULT_RELAY_URL,
        host: str = "127.0.0.1",
        port: int = DEFAULT_LISTENER_PORT,
        timeout: float = 300,
        open_url=webbrowser.open,
    ) -> None:
        self.token_store = token_store
        self.relay_url = relay_url.rstrip("/")
        self.host = host
        self.port = port
        self.timeout = timeout
        self.accepted_paths = {AUTH_PATH, REFRESH_PATH}
        self.result: ListenerResult | None = None
        self._open_url = open_url
        self._server: http.server.HTTPServer | None = None
        self._served = False

    def __enter__(self) -> "CallbackListener":
        self.bind()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def bound_port(self) -> int:
        if self._server is None:
            raise RuntimeError("Callback listener is not bound.")
        return self._server.server_address[1]

    @property
    def is_open(self) -> bool:
        return self._server is not None

    def bind(self) -> None:
        if self._served:
            raise RuntimeError("Callback listener has already served its request.")
        if self._server is not None:
            return
        handler = functools.partial(CallbackHandler, listener=self)
        self._server = http.server.HTTPServer((self.host, self.port), handler)
        self._server.timeout = self.timeout
        LOGGER.info("Callback listener bound on %s:%s", self.host, self.bound_port)

    def close(self) -> None:
        server, self._server = self._server, None
        if server is not None:
            server.server_close()
            LOGGER.info("Callback listener closed")

    def serve_one(self) -> ListenerResult:
        """Wait for one request, handle it, then release the socket."""
        self.bind()
        self._served = True
        try:
            self._server.handle_request()
        finally:
            self.close()

        if self.result is None:
            self.result = ListenerResult(False, error="timeout")
        return self.result

    def login(self) -> ListenerResult:
        return self._run(join_url(self.relay_url, "/spotify-login"), accepted=AUTH_PATH)

    def refresh(self, refresh_token: str) -> ListenerResult:
        url = append_query_params(
            join_url(self.relay_url, REFRESH_PATH),
            {"refresh_token": refresh_token, "redirect": "true"},
        )
        return self._run(url, accepted=REFRESH_PATH)

    def _run(self, url: str, *, accepted: str) -> ListenerResult:
        self.accepted_paths = {accepted}
        self.bind()
        try:
            self._open_url(url)
        except Exception:
            self.close()
            raise
        return self.serve_one()
