from __future__ import annotations

import os
from pathlib import Path
import pwd

import pytest

from stepwise.models import ProvisioningStep
from stepwise.proc import Identity
from stepwise.services.context import ExecutionContext, lookup_identity, resolve_path
from stepwise.services.errors import ContextError


def _context(root_identity: Identity, directory: Path) -> ExecutionContext:
    return ExecutionContext.initial(shell=["/bin/sh", "-c"], user=root_identity, directory=directory)


def test_resolve_path_handles_absolute_relative_and_home() -> None:
    base = Path("/srv/build")
    assert resolve_path("/opt/pg", base=base, home="/home/pg") == Path("/opt/pg")
    assert resolve_path("src/../out", base=base, home="/home/pg") == Path("/srv/build/out")
    assert resolve_path("~", base=base, home="/home/pg") == Path("/home/pg")
    assert resolve_path("~/pgx/cargo-pgx", base=base, home="/home/pg") == Path("/home/pg/pgx/cargo-pgx")


@pytest.mark.parametrize("raw", ["", "~other/dir", "bad\x00path"])
def test_resolve_path_rejects_unresolvable_references(raw: str) -> None:
    with pytest.raises(ContextError):
        resolve_path(raw, base=Path("/"), home="/root")


def test_switch_user_keeps_directory(root_identity, users, workspace: Path) -> None:
    context = _context(root_identity, workspace)

    identity = context.switch_user("postgres", users)

    assert identity.name == "postgres"
    assert context.user == identity
    assert context.directory == workspace


def test_switch_user_unknown_leaves_context_untouched(root_identity, users, workspace: Path) -> None:
    context = _context(root_identity, workspace)

    with pytest.raises(ContextError):
        context.switch_user("ghost", users)

    assert context.user == root_identity


def test_change_directory_verifies_existence(root_identity, workspace: Path) -> None:
    context = _context(root_identity, workspace)

    with pytest.raises(ContextError):
        context.change_directory("missing")
    assert context.directory == workspace

    assert context.change_directory("missing", verify=False) == workspace / "missing"
    assert context.directory == workspace / "missing"


def test_for_step_applies_overrides_without_mutating(root_identity, users, workspace: Path) -> None:
    (workspace / "build").mkdir()
    context = _context(root_identity, workspace)
    context.set_env({"A": "1"})
    step = ProvisioningStep(
        index=0,
        command="make",
        working_directory="build",
        run_as_user="postgres",
        env={"B": "2"},
    )

    scoped = context.for_step(step, resolver=users)

    assert scoped.user.name == "postgres"
    assert scoped.directory == workspace / "build"
    assert scoped.env == {"A": "1", "B": "2"}
    assert context.user == root_identity
    assert context.directory == workspace
    assert context.env == {"A": "1"}


def test_command_for_prefers_step_shell_then_context_shell(root_identity, workspace: Path) -> None:
    context = _context(root_identity, workspace)

    assert context.command_for(ProvisioningStep(index=0, command="ls")) == ["/bin/sh", "-c", "ls"]
    assert context.command_for(ProvisioningStep(index=1, command="ls", shell=["bash", "-c"])) == ["bash", "-c", "ls"]
    assert context.command_for(ProvisioningStep(index=2, argv=["make", "install"])) == ["make", "install"]


def test_set_shell_rejects_empty_prefix(root_identity, workspace: Path) -> None:
    with pytest.raises(ContextError):
        _context(root_identity, workspace).set_shell([])


def test_process_env_layers_identity_and_context(root_identity, workspace: Path) -> None:
    context = _context(root_identity, workspace)
    context.set_env({"HOME": "/override", "CC": "clang"})

    env = context.process_env({"PATH": "/bin", "USER": "someone"})

    assert env == {"PATH": "/bin", "USER": "root", "LOGNAME": "root", "HOME": "/override", "CC": "clang"}


def test_lookup_identity_resolves_current_user_by_name_and_uid() -> None:
    entry = pwd.getpwuid(os.geteuid())

    by_name = lookup_identity(entry.pw_name)
    by_uid = lookup_identity(str(entry.pw_uid))

    assert by_name == by_uid
    assert by_name.home == entry.pw_dir


def test_lookup_identity_unknown_user() -> None:
    with pytest.raises(ContextError):
        lookup_identity("stepwise-no-such-user")
