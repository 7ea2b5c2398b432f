from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
import os
from pathlib import Path
import pwd
from typing import Callable, Mapping, Sequence

from stepwise.models import ProvisioningStep
from stepwise.proc import Identity
from stepwise.services.errors import ContextError

logger = logging.getLogger(__name__)

IdentityResolver = Callable[[str], Identity]


def _identity_from_pwd(entry: pwd.struct_passwd) -> Identity:
    return Identity(name=entry.pw_name, uid=entry.pw_uid, gid=entry.pw_gid, home=entry.pw_dir)


def lookup_identity(ref: str) -> Identity:
    """Resolve a user name or numeric uid through the system user database."""
    if not ref or not ref.strip():
        raise ContextError("User reference must not be empty")
    ref = ref.strip()
    try:
        if ref.isdigit():
            return _identity_from_pwd(pwd.getpwuid(int(ref)))
        return _identity_from_pwd(pwd.getpwnam(ref))
    except KeyError as exc:
        raise ContextError(f"Unknown user: {ref!r}") from exc


def current_identity() -> Identity:
    uid = os.geteuid()
    try:
        return _identity_from_pwd(pwd.getpwuid(uid))
    except KeyError:
        # Containers frequently run with a uid absent from /etc/passwd.
        return Identity(name=str(uid), uid=uid, gid=os.getegid(), home=os.getenv("HOME", "/"))


def resolve_path(raw: str, *, base: Path, home: str) -> Path:
    """Resolve a working directory reference against a directory and a home."""
    if not raw:
        raise ContextError("Directory reference must not be empty")
    if "\x00" in raw:
        raise ContextError(f"Directory reference contains a NUL byte: {raw!r}")
    if raw == "~" or raw.startswith("~/"):
        candidate = Path(home) / raw[2:]
    elif raw.startswith("~"):
        raise ContextError(f"Unsupported home reference: {raw!r}")
    else:
        candidate = Path(raw)
        if not candidate.is_absolute():
            candidate = base / candidate
    return Path(os.path.normpath(candidate))


@dataclass
class ExecutionContext:
    user: Identity
    directory: Path
    env: dict[str, str] = field(default_factory=dict)
    shell: list[str] = field(default_factory=list)

    @classmethod
    def initial(
        cls,
        *,
        shell: Sequence[str],
        env: Mapping[str, str] | None = None,
        user: Identity | None = None,
        directory: Path | None = None,
    ) -> ExecutionContext:
        return cls(
            user=user or current_identity(),
            directory=directory or Path.cwd(),
            env=dict(env or {}),
            shell=list(shell),
        )

    def switch_user(self, ref: str, resolver: IdentityResolver = lookup_identity) -> Identity:
        identity = resolver(ref)
        logger.debug("Switching user %s -> %s", self.user.name, identity.name)
        self.user = identity
        return identity

    def change_directory(self, raw: str, *, verify: bool = True) -> Path:
        target = resolve_path(raw, base=self.directory, home=self.user.home)
        if verify and not target.is_dir():
            raise ContextError(f"Working directory does not exist: {target}")
        logger.debug("Changing directory %s -> %s", self.directory, target)
        self.directory = target
        return target

    def set_env(self, values: Mapping[str, str]) -> None:
        self.env.update(values)

    def set_shell(self, prefix: Sequence[str]) -> None:
        if not prefix:
            raise ContextError("Shell prefix must not be empty")
        self.shell = list(prefix)

    def for_step(
        self,
        step: ProvisioningStep,
        *,
        resolver: IdentityResolver = lookup_identity,
        verify: bool = True,
    ) -> ExecutionContext:
        """Return the effective context of one step without touching this one."""
        scoped = replace(self, env={**self.env, **step.env}, shell=list(self.shell))
        if step.run_as_user is not None:
            scoped.switch_user(step.run_as_user, resolver)
        if step.working_directory is not None:
            scoped.change_directory(step.working_directory, verify=verify)
        return scoped

    def command_for(self, step: ProvisioningStep) -> list[str]:
        if step.argv is not None:
            return list(step.argv)
        shell = step.shell or self.shell
        return [*shell, step.command or ""]

    def process_env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        merged = dict(os.environ if base is None else base)
        merged.update(HOME=self.user.home, USER=self.user.name, LOGNAME=self.user.name)
        merged.update(self.env)
        return merged
