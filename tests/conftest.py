from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from stepwise.proc import Identity
from stepwise.services.engine import ExecutionEngine
from tests.runner_utils import FakeUsers, RecordingRunner


@pytest.fixture
def users(tmp_path: Path) -> FakeUsers:
    users = FakeUsers(tmp_path / "home")
    users.add("postgres", uid=999)
    return users


@pytest.fixture
def root_identity(users: FakeUsers) -> Identity:
    return users("root")


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def engine_factory(runner: RecordingRunner, users: FakeUsers, root_identity: Identity, workspace: Path):
    def build(**overrides) -> ExecutionEngine:
        options = {
            "runner": runner,
            "resolver": users,
            "initial_user": root_identity,
            "initial_directory": workspace,
            "base_env": {"PATH": "/usr/bin:/bin"},
        }
        options.update(overrides)
        return ExecutionEngine(**options)

    return build


@pytest.fixture()
def cli_runner():
    import stepwise.cli as cli

    return CliRunner(), cli.app
