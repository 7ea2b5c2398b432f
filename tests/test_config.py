from __future__ import annotations

import pytest

from stepwise.config import Settings
from stepwise.constants import DEFAULT_SHELL


def test_settings_defaults(monkeypatch) -> None:
    for name in ("STEPWISE_SHELL", "STEPWISE_DEADLINE"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings == Settings(shell=DEFAULT_SHELL, deadline=None)


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("STEPWISE_SHELL", "/bin/bash -o pipefail -c")
    monkeypatch.setenv("STEPWISE_DEADLINE", "3600")

    settings = Settings.from_env()

    assert settings.shell == ("/bin/bash", "-o", "pipefail", "-c")
    assert settings.deadline == 3600.0


@pytest.mark.parametrize("raw", ["soon", "0", "-5"])
def test_settings_reject_bad_deadline(monkeypatch, raw: str) -> None:
    monkeypatch.setenv("STEPWISE_DEADLINE", raw)
    with pytest.raises(ValueError):
        Settings.from_env()
