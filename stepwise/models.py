from typing import Optional

from sqlmodel import Field, SQLModel

from stepwise.constants import (
    STEP_KIND_ENV,
    STEP_KIND_RUN,
    STEP_KIND_USER,
    STEP_KIND_WORKDIR,
)


class ProvisioningStepBase(SQLModel):
    kind: str = STEP_KIND_RUN
    name: Optional[str] = None
    # Shell form; run through the active shell.
    command: Optional[str] = None
    # Exec form; launched directly without a shell.
    argv: Optional[list[str]] = None
    working_directory: Optional[str] = None
    run_as_user: Optional[str] = None
    continue_on_error: bool = False
    env: dict[str, str] = Field(default_factory=dict)
    shell: Optional[list[str]] = None


class ProvisioningStep(ProvisioningStepBase):
    index: int

    @property
    def is_context_step(self) -> bool:
        return self.kind != STEP_KIND_RUN

    def describe(self) -> str:
        if self.kind == STEP_KIND_RUN:
            if self.argv is not None:
                return " ".join(self.argv)
            return self.command or ""
        if self.kind == STEP_KIND_USER:
            return f"USER {self.run_as_user}"
        if self.kind == STEP_KIND_WORKDIR:
            return f"WORKDIR {self.working_directory}"
        if self.kind == STEP_KIND_ENV:
            return "ENV " + " ".join(f"{k}={v}" for k, v in self.env.items())
        return f"SHELL {self.shell}"


class ProvisioningPlan(SQLModel):
    base_image: Optional[str] = None
    shell: Optional[list[str]] = None
    env: dict[str, str] = Field(default_factory=dict)
    steps: list[ProvisioningStep] = Field(default_factory=list)
