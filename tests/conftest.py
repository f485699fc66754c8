import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def disable_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("time.sleep", lambda *_args, **_kwargs: None)


@pytest.fixture(autouse=True)
def isolated_questlog_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "QUESTLOG_DATABASE_URL",
        "QUESTLOG_RELAY_URL",
        "QUESTLOG_RELAY_TOKEN",
        "QUESTLOG_TRUSTED_PLAYER_EDIT",
        "QUESTLOG_ALLOW_PLAYERS_ACCEPT",
        "QUESTLOG_ALLOW_PLAYERS_CREATE",
        "QUESTLOG_HIDE_FROM_PLAYERS",
        "QUESTLOG_DEFAULT_PERMISSION",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_http_circuits():
    yield
    from questlog.infrastructure.resilient_http import reset_circuit_breakers

    reset_circuit_breakers()
