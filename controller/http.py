from __future__ import annotations

import httpx

from .constants import DEFAULT_HTTP_TIMEOUT, LOGGER, SPOTIFY_API_BASE_URL

MAX_LOGGED_BODY = 1000


async def log_request(request: httpx.Request) -> None:
    LOGGER.info("Spotify API request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    LOGGER.info(
        "Spotify API response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > MAX_LOGGED_BODY:
            text = text[:MAX_LOGGED_BODY] + "...<truncated>"
        LOGGER.warning("Spotify API error body: %s", text)


def build_api_client(
    *,
    base_url: str = SPOTIFY_API_BASE_URL,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
    debug: bool = True,
) -> httpx.AsyncClient:
    event_hooks: dict[str, list] = {"request": [], "response": []}
    if debug:
        event_hooks = {"request": [log_request], "response": [log_response]}

    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        transport=transport,
        event_hooks=event_hooks,
    )
