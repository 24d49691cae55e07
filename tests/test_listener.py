import socket
import threading
import time
import urllib.parse

import httpx
import pytest

from auth.token_store import MemoryTokenStore
from controller.listener import CallbackListener, ListenerResult, parse_callback


def _serve_in_background(listener: CallbackListener):
    results: list[ListenerResult] = []
    thread = threading.Thread(target=lambda: results.append(listener.serve_one()))
    thread.start()
    return thread, results


def _bound_listener(store, **kwargs) -> CallbackListener:
    listener = CallbackListener(store, port=0, timeout=5, **kwargs)
    listener.bind()
    return listener


def test_parse_callback_query_form() -> None:
    route, params = parse_callback("/auth?access_token=AT1&refresh_token=RT1")

    assert route == "/auth"
    assert params == {"access_token": "AT1", "refresh_token": "RT1"}


def test_parse_callback_path_segment_form() -> None:
    route, params = parse_callback("/auth/access_token=AT1&refresh_token=RT1")

    assert route == "/auth"
    assert params == {"access_token": "AT1", "refresh_token": "RT1"}


def test_parse_callback_refresh_path() -> None:
    route, params = parse_callback("/refresh_token?access_token=AT2")

    assert route == "/refresh_token"
    assert params == {"access_token": "AT2"}


def test_stores_token_and_closes() -> None:
    store = MemoryTokenStore()
    listener = _bound_listener(store)
    port = listener.bound_port
    thread, results = _serve_in_background(listener)

    response = httpx.get(
        f"http://127.0.0.1:{port}/auth",
        params={"access_token": "AT1", "refresh_token": "RT1"},
        timeout=5,
    )
    thread.join(timeout=5)

    assert response.status_code == 200
    assert "Auth was successful" in response.text
    assert results == [ListenerResult(True, access_token="AT1")]
    assert store.get_token() == "AT1"
    assert store.get_refresh_token() == "RT1"
    assert listener.is_open is False


def test_second_request_is_refused() -> None:
    store = MemoryTokenStore()
    listener = _bound_listener(store)
    port = listener.bound_port
    thread, _ = _serve_in_background(listener)

    httpx.get(f"http://127.0.0.1:{port}/auth", params={"access_token": "AT1"}, timeout=5)
    thread.join(timeout=5)

    with pytest.raises(httpx.ConnectError):
        httpx.get(f"http://127.0.0.1:{port}/auth", params={"access_token": "AT9"}, timeout=5)
    assert store.get_token() == "AT1"


def test_missing_token_shows_error_and_closes() -> None:
    store = MemoryTokenStore()
    listener = _bound_listener(store)
    port = listener.bound_port
    thread, results = _serve_in_background(listener)

    response = httpx.get(f"http://127.0.0.1:{port}/auth", timeout=5)
    thread.join(timeout=5)

    assert response.status_code == 400
    assert "Something went wrong" in response.text
    assert results[0].success is False
    assert results[0].error == "missing_token"
    assert store.get_token() is None
    assert listener.is_open is False
    with pytest.raises(httpx.ConnectError):
        httpx.get(f"http://127.0.0.1:{port}/auth", params={"access_token": "AT1"}, timeout=5)


def test_relayed_error_is_not_stored() -> None:
    store = MemoryTokenStore()
    listener = _bound_listener(store)
    port = listener.bound_port
    thread, results = _serve_in_background(listener)

    response = httpx.get(f"http://127.0.0.1:{port}/auth", params={"error": "state_mismatch"}, timeout=5)
    thread.join(timeout=5)

    assert response.status_code == 400
    assert "state_mismatch" in response.text
    assert results[0].error == "state_mismatch"
    assert store.get_token() is None


def test_unexpected_path_is_rejected() -> None:
    store = MemoryTokenStore()
    listener = _bound_listener(store)
    port = listener.bound_port
    thread, results = _serve_in_background(listener)

    response = httpx.get(f"http://127.0.0.1:{port}/favicon.ico", timeout=5)
    thread.join(timeout=5)

    assert response.status_code == 400
    assert results[0].error == "unexpected_path"
    assert store.get_token() is None


def test_timeout_without_request_closes_socket() -> None:
    store = MemoryTokenStore()
    listener = CallbackListener(store, port=0, timeout=0.1)
    listener.bind()

    result = listener.serve_one()

    assert result == ListenerResult(False, error="timeout")
    assert listener.is_open is False


def test_listener_cannot_be_reused() -> None:
    listener = CallbackListener(MemoryTokenStore(), port=0, timeout=0.1)
    listener.serve_one()

    with pytest.raises(RuntimeError, match="already served"):
        listener.bind()


def test_context_manager_closes_on_exit() -> None:
    with CallbackListener(MemoryTokenStore(), port=0) as listener:
        assert listener.is_open is True

    assert listener.is_open is False


def test_login_opens_relay_login_and_stores_token() -> None:
    store = MemoryTokenStore()
    opened: list[str] = []

    def open_url(url: str) -> None:
        opened.append(url)
        port = listener.bound_port

        def browser() -> None:
            httpx.get(f"http://127.0.0.1:{port}/auth/access_token=AT1&refresh_token=RT1", timeout=5)

        threading.Thread(target=browser).start()

    listener = CallbackListener(
        store,
        relay_url="http://relay.example:3000/",
        port=0,
        timeout=5,
        open_url=open_url,
    )

    result = listener.login()

    assert opened == ["http://relay.example:3000/spotify-login"]
    assert result.success is True
    assert store.get_token() == "AT1"


def test_refresh_opens_relay_refresh_in_redirect_mode() -> None:
    store = MemoryTokenStore()
    opened: list[str] = []

    def open_url(url: str) -> None:
        opened.append(url)
        port = listener.bound_port
        threading.Thread(
            target=lambda: httpx.get(
                f"http://127.0.0.1:{port}/refresh_token",
                params={"access_token": "AT2"},
                timeout=5,
            )
        ).start()

    listener = CallbackListener(store, relay_url="http://relay.example:3000", port=0, timeout=5, open_url=open_url)

    result = listener.refresh("RT1")

    query = urllib.parse.parse_qs(urllib.parse.urlparse(opened[0]).query)
    assert opened[0].startswith("http://relay.example:3000/refresh_token?")
    assert query == {"refresh_token": ["RT1"], "redirect": ["true"]}
    assert result.success is True
    assert store.get_token() == "AT2"


def test_login_rejects_refresh_path() -> None:
    store = MemoryTokenStore()

    def open_url(url: str) -> None:
        del url
        port = listener.bound_port
        threading.Thread(
            target=lambda: httpx.get(
                f"http://127.0.0.1:{port}/refresh_token",
                params={"access_token": "AT2"},
                timeout=5,
            )
        ).start()

    listener = CallbackListener(store, port=0, timeout=5, open_url=open_url)

    result = listener.login()

    assert result.error == "unexpected_path"
    assert store.get_token() is None


def test_open_url_failure_releases_socket() -> None:
    def open_url(url: str) -> None:
        raise OSError("no browser")

    listener = CallbackListener(MemoryTokenStore(), port=0, open_url=open_url)

    with pytest.raises(OSError):
        listener.login()

    assert listener.is_open is False


def test_idle_connection_does_not_block_past_timeout() -> None:
    listener = CallbackListener(MemoryTokenStore(), port=0, timeout=1)
    listener.bind()
    port = listener.bound_port
    thread, results = _serve_in_background(listener)

    started = time.monotonic()
    with socket.create_connection(("127.0.0.1", port), timeout=5):
        thread.join(timeout=6)
        elapsed = time.monotonic() - started

    assert not thread.is_alive()
    assert elapsed < 6
    assert results == [ListenerResult(False, error="timeout")]
    assert listener.is_open is False
