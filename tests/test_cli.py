import pytest
from typer.testing import CliRunner

from auth.token_store import FileTokenStore
from controller import cli
from controller.client import RelayRequestError
from controller.listener import ListenerResult

runner = CliRunner()


@pytest.fixture
def store_path(tmp_path, monkeypatch):
    path = tmp_path / "tokens.json"
    monkeypatch.setenv("TOKEN_STORE_PATH", str(path))
    return path


class _FakeListener:
    def __init__(self, result: ListenerResult) -> None:
        self.result = result
        self.refreshed_with: str | None = None

    def login(self) -> ListenerResult:
        return self.result

    def refresh(self, refresh_token: str) -> ListenerResult:
        self.refreshed_with = refresh_token
        return self.result


class _FakePlayer:
    def __init__(self, payload=None, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.actions: list[str] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None

    def __getattr__(self, name):
        def action():
            self.actions.append(name)
            if self.error is not None:
                raise self.error
            return self.payload

        return action


def test_describe_track() -> None:
    payload = {"is_playing": True, "item": {"name": "Song", "artists": [{"name": "A"}, {"name": "B"}]}}

    assert cli.describe_track(payload) == "Playing: Song by A, B"
    assert cli.describe_track({"is_playing": False, "item": {"name": "Song"}}) == "Paused: Song"
    assert cli.describe_track(None) == "Nothing is playing."


def test_login_success(monkeypatch, store_path) -> None:
    monkeypatch.setattr(cli, "_build_listener", lambda timeout: _FakeListener(ListenerResult(True, access_token="AT1")))

    result = runner.invoke(cli.app, ["login"])

    assert result.exit_code == 0
    assert "Logged in" in result.output


def test_login_failure(monkeypatch, store_path) -> None:
    monkeypatch.setattr(
        cli,
        "_build_listener",
        lambda timeout: _FakeListener(ListenerResult(False, error="state_mismatch")),
    )

    result = runner.invoke(cli.app, ["login"])

    assert result.exit_code == 1
    assert "state_mismatch" in result.output


def test_refresh_requires_refresh_token(store_path) -> None:
    result = runner.invoke(cli.app, ["refresh"])

    assert result.exit_code == 1
    assert "No refresh token" in result.output


def test_refresh_uses_stored_refresh_token(monkeypatch, store_path) -> None:
    FileTokenStore(store_path).set_refresh_token("RT1")
    listener = _FakeListener(ListenerResult(True, access_token="AT2"))
    monkeypatch.setattr(cli, "_build_listener", lambda timeout: listener)

    result = runner.invoke(cli.app, ["refresh"])

    assert result.exit_code == 0
    assert listener.refreshed_with == "RT1"


def test_token_and_logout(store_path) -> None:
    FileTokenStore(store_path).set_token("AT1")

    assert "An access token is stored" in runner.invoke(cli.app, ["token"]).output

    runner.invoke(cli.app, ["logout"])

    assert "No access token stored" in runner.invoke(cli.app, ["token"]).output


@pytest.mark.parametrize(
    "command, action",
    [
        ("now-playing", "currently_playing"),
        ("next", "play_next"),
        ("previous", "play_previous"),
        ("pause", "pause"),
    ],
)
def test_player_commands(monkeypatch, store_path, command, action) -> None:
    player = _FakePlayer({"is_playing": True, "item": {"name": "Song"}})
    monkeypatch.setattr(cli, "PlayerClient", lambda store, relay_url: player)

    result = runner.invoke(cli.app, [command])

    assert result.exit_code == 0
    assert player.actions == [action]
    assert "Playing: Song" in result.output


def test_player_command_without_login(store_path) -> None:
    result = runner.invoke(cli.app, ["now-playing"])

    assert result.exit_code == 1
    assert "login" in result.output


def test_player_command_relay_failure(monkeypatch, store_path) -> None:
    player = _FakePlayer(error=RelayRequestError("boom", status_code=502))
    monkeypatch.setattr(cli, "PlayerClient", lambda store, relay_url: player)

    result = runner.invoke(cli.app, ["pause"])

    assert result.exit_code == 1
    assert "Request failed" in result.output
