"""Spotify Controller CLI: log in through the relay and drive playback."""

from __future__ import annotations

import logging
import os
from typing import Annotated, Any

import typer

from auth.token_store import FileTokenStore, TokenStore

from .client import NotAuthenticatedError, PlayerClient, RelayRequestError
from .constants import DEFAULT_LISTENER_PORT, DEFAULT_RELAY_URL, DEFAULT_TOKEN_STORE_PATH
from .listener import CallbackListener

app = typer.Typer(
    name="spotify-controller",
    help="Control Spotify playback from your editor.",
    no_args_is_help=True,
)


def get_token_store() -> TokenStore:
    return FileTokenStore(os.getenv("TOKEN_STORE_PATH", str(DEFAULT_TOKEN_STORE_PATH)))


def get_relay_url() -> str:
    return os.getenv("RELAY_BASE_URL", DEFAULT_RELAY_URL)


def get_listener_port() -> int:
    raw = os.getenv("LISTENER_PORT", "").strip()
    if not raw:
        return DEFAULT_LISTENER_PORT
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError("LISTENER_PORT must be an integer value.")


def describe_track(listening_to: Any) -> str:
    if not isinstance(listening_to, dict) or not isinstance(listening_to.get("item"), dict):
        return "Nothing is playing."
    item = listening_to["item"]
    artists = ", ".join(
        artist.get("name", "") for artist in item.get("artists", []) if isinstance(artist, dict)
    )
    name = item.get("name", "Unknown track")
    state = "Playing" if listening_to.get("is_playing") else "Paused"
    if artists:
        return f"{state}: {name} by {artists}"
    return f"{state}: {name}"


def _build_listener(timeout: float) -> CallbackListener:
    return CallbackListener(
        get_token_store(),
        relay_url=get_relay_url(),
        port=get_listener_port(),
        timeout=timeout,
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Spotify Controller: log in and control playback."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


@app.command()
def login(
    timeout: Annotated[float, typer.Option("--timeout", help="Seconds to wait for the browser")] = 300,
) -> None:
    """Open the Spotify login in a browser and store the resulting token."""
    try:
        result = _build_listener(timeout).login()
    except OSError as error:
        typer.echo(f"Could not start the callback listener: {error}", err=True)
        raise typer.Exit(1)

    if not result.success:
        typer.echo(f"Login failed: {result.error}", err=True)
        raise typer.Exit(1)
    typer.echo("Logged in to Spotify.")


@app.command()
def refresh(
    timeout: Annotated[float, typer.Option("--timeout", help="Seconds to wait for the browser")] = 60,
) -> None:
    """Mint a new access token from the stored refresh token."""
    store = get_token_store()
    refresh_token = store.get_refresh_token()
    if not refresh_token:
        typer.echo("No refresh token stored; run the login command first.", err=True)
        raise typer.Exit(1)

    try:
        result = _build_listener(timeout).refresh(refresh_token)
    except OSError as error:
        typer.echo(f"Could not start the callback listener: {error}", err=True)
        raise typer.Exit(1)

    if not result.success:
        typer.echo(f"Refresh failed: {result.error}", err=True)
        raise typer.Exit(1)
    typer.echo("Access token refreshed.")


@app.command()
def token() -> None:
    """Show whether an access token is stored."""
    if get_token_store().get_token():
        typer.echo("An access token is stored.")
    else:
        typer.echo("No access token stored.")


@app.command()
def logout() -> None:
    """Forget the stored tokens."""
    get_token_store().clear()
    typer.echo("Stored tokens removed.")


def _run_player(action: str) -> None:
    try:
        with PlayerClient(get_token_store(), relay_url=get_relay_url()) as client:
            listening_to = getattr(client, action)()
    except NotAuthenticatedError as error:
        typer.echo(str(error), err=True)
        raise typer.Exit(1)
    except RelayRequestError as error:
        typer.echo(f"Request failed: {error}", err=True)
        raise typer.Exit(1)
    typer.echo(describe_track(listening_to))


@app.command("now-playing")
def now_playing() -> None:
    """Show the track that is currently playing."""
    _run_player("currently_playing")


@app.command("next")
def next_track() -> None:
    """Skip to the next track."""
    _run_player("play_next")


@app.command("previous")
def previous_track() -> None:
    """Go back to the previous track."""
    _run_player("play_previous")


@app.command()
def pause() -> None:
    """Pause playback."""
    _run_player("pause")


if __name__ == "__main__":
    app()
