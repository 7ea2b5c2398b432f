from __future__ import annotations

from dataclasses import dataclass
import os
import shlex

from stepwise.constants import DEFAULT_SHELL


def _shell() -> tuple[str, ...]:
    raw = os.getenv("STEPWISE_SHELL")
    if not raw:
        return DEFAULT_SHELL
    parts = tuple(shlex.split(raw))
    return parts or DEFAULT_SHELL


def _deadline() -> float | None:
    raw = os.getenv("STEPWISE_DEADLINE")
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"STEPWISE_DEADLINE must be a number of seconds, got {raw!r}") from exc
    if value <= 0:
        raise ValueError("STEPWISE_DEADLINE must be positive")
    return value


@dataclass(frozen=True)
class Settings:
    shell: tuple[str, ...]
    deadline: float | None

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            shell=_shell(),
            deadline=_deadline(),
        )
