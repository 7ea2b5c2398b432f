from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stepwise.proc import CommandResult


class StepwiseException(Exception):
    pass


class ParseError(StepwiseException):
    pass


class ContextError(StepwiseException):
    def __init__(self, message: str, *, step_index: int | None = None) -> None:
        self.step_index = step_index
        if step_index is not None:
            message = f"Step {step_index}: {message}"
        super().__init__(message)


class StepFailed(StepwiseException):
    def __init__(self, *, step_index: int, exit_code: int, result: CommandResult | None = None) -> None:
        self.step_index = step_index
        self.exit_code = exit_code
        self.result = result
        super().__init__(self._build_message())

    def _build_message(self) -> str:
        message = f"Step {self.step_index} failed with exit code {self.exit_code}"
        if self.result is None:
            return message
        detail = (self.result.stderr or self.result.stdout).strip()
        if len(detail) > 400:
            detail = f"...{detail[-397:]}"
        cmd = " ".join(self.result.command)
        return f"{message} (command={cmd!r}, detail={detail!r})"


class DeadlineExceeded(StepwiseException):
    def __init__(self, *, step_index: int, deadline: float) -> None:
        self.step_index = step_index
        self.deadline = deadline
        super().__init__(f"Deadline of {deadline:g}s exceeded at step {step_index}")
