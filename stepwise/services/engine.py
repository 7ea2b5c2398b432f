from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from pathlib import Path
import subprocess
import time
from typing import Callable, Mapping, Sequence

from stepwise.constants import (
    DEFAULT_SHELL,
    RUN_STATUS_DRY_RUN,
    RUN_STATUS_SUCCEEDED,
    STEP_KIND_ENV,
    STEP_KIND_SHELL,
    STEP_KIND_USER,
    STEP_KIND_WORKDIR,
    STEP_STATUS_APPLIED,
    STEP_STATUS_IGNORED,
    STEP_STATUS_OK,
    STEP_STATUS_SKIPPED,
)
from stepwise.models import ProvisioningPlan, ProvisioningStep
from stepwise.proc import CommandRunner, Identity, format_command, run_command
from stepwise.services.context import ExecutionContext, IdentityResolver, lookup_identity
from stepwise.services.errors import ContextError, DeadlineExceeded, StepFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepOutcome:
    index: int
    kind: str
    description: str
    status: str
    user: str
    directory: str
    returncode: int | None = None
    duration: float | None = None


@dataclass(frozen=True)
class RunResult:
    status: str
    base_image: str | None
    exit_code: int
    started_at: datetime
    finished_at: datetime
    steps: list[StepOutcome] = field(default_factory=list)

    @property
    def ignored_failures(self) -> list[StepOutcome]:
        return [outcome for outcome in self.steps if outcome.status == STEP_STATUS_IGNORED]


class ExecutionEngine:
    """Run the steps of a plan in declared order, stopping at the first failure."""

    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        resolver: IdentityResolver | None = None,
        clock: Callable[[], float] | None = None,
        dry_run: bool = False,
        initial_user: Identity | None = None,
        initial_directory: Path | None = None,
        base_env: Mapping[str, str] | None = None,
        default_shell: Sequence[str] = DEFAULT_SHELL,
    ) -> None:
        self._runner = runner
        self._resolver = resolver or lookup_identity
        self._clock = clock or time.monotonic
        self._dry_run = dry_run
        self._initial_user = initial_user
        self._initial_directory = initial_directory
        self._base_env = base_env
        self._default_shell = tuple(default_shell)

    def run(self, plan: ProvisioningPlan, *, deadline: float | None = None) -> RunResult:
        logger.info(
            "Starting provisioning run: %d steps, base_image=%s, dry_run=%s",
            len(plan.steps),
            plan.base_image,
            self._dry_run,
        )
        started_at = datetime.now(timezone.utc)
        started = self._clock()
        context = ExecutionContext.initial(
            shell=plan.shell or self._default_shell,
            env=plan.env,
            user=self._initial_user,
            directory=self._initial_directory,
        )
        outcomes: list[StepOutcome] = []

        for step in plan.steps:
            timeout = self._remaining(step, deadline=deadline, started=started)
            if step.is_context_step:
                outcomes.append(self._apply_context_step(context, step))
            else:
                outcomes.append(self._execute_step(context, step, timeout=timeout, deadline=deadline))

        logger.info("Finished provisioning run: %d steps", len(outcomes))
        return RunResult(
            status=RUN_STATUS_DRY_RUN if self._dry_run else RUN_STATUS_SUCCEEDED,
            base_image=plan.base_image,
            exit_code=0,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            steps=outcomes,
        )

    def _remaining(self, step: ProvisioningStep, *, deadline: float | None, started: float) -> float | None:
        if deadline is None:
            return None
        remaining = deadline - (self._clock() - started)
        if remaining <= 0:
            logger.error("Deadline of %gs exhausted before step %d", deadline, step.index, extra={"step": step.index})
            raise DeadlineExceeded(step_index=step.index, deadline=deadline)
        return remaining

    def _resolve(self, ref: str) -> Identity:
        try:
            return self._resolver(ref)
        except ContextError:
            if not self._dry_run:
                raise
            # Users created by earlier, unexecuted steps do not exist yet.
            logger.warning("Dry run: user %r does not exist yet", ref)
            return Identity(name=ref, uid=-1, gid=-1, home=f"/home/{ref}")

    def _apply_context_step(self, context: ExecutionContext, step: ProvisioningStep) -> StepOutcome:
        logger.info("%s", step.describe(), extra={"step": step.index})
        try:
            if step.kind == STEP_KIND_USER:
                context.switch_user(step.run_as_user or "", self._resolve)
            elif step.kind == STEP_KIND_WORKDIR:
                context.change_directory(step.working_directory or "", verify=not self._dry_run)
            elif step.kind == STEP_KIND_ENV:
                context.set_env(step.env)
            elif step.kind == STEP_KIND_SHELL:
                context.set_shell(step.shell or [])
            else:
                raise ContextError(f"Unknown step kind {step.kind!r}")
        except ContextError as exc:
            if exc.step_index is not None:
                raise
            raise ContextError(str(exc), step_index=step.index) from exc
        return StepOutcome(
            index=step.index,
            kind=step.kind,
            description=step.describe(),
            status=STEP_STATUS_APPLIED,
            user=context.user.name,
            directory=str(context.directory),
        )

    def _execute_step(
        self,
        context: ExecutionContext,
        step: ProvisioningStep,
        *,
        timeout: float | None,
        deadline: float | None,
    ) -> StepOutcome:
        try:
            scoped = context.for_step(step, resolver=self._resolve, verify=not self._dry_run)
        except ContextError as exc:
            raise ContextError(str(exc), step_index=step.index) from exc
        command = scoped.command_for(step)
        logger.info(
            "RUN %s (user=%s cwd=%s)",
            format_command(command),
            scoped.user.name,
            scoped.directory,
            extra={"step": step.index},
        )

        if self._dry_run:
            return StepOutcome(
                index=step.index,
                kind=step.kind,
                description=step.describe(),
                status=STEP_STATUS_SKIPPED,
                user=scoped.user.name,
                directory=str(scoped.directory),
            )

        try:
            result = run_command(
                command,
                cwd=scoped.directory,
                identity=scoped.user,
                env=scoped.process_env(self._base_env),
                timeout=timeout,
                runner=self._runner,
            )
        except subprocess.TimeoutExpired as exc:
            logger.error("Step %d timed out", step.index, extra={"step": step.index})
            raise DeadlineExceeded(step_index=step.index, deadline=deadline or 0.0) from exc
        except OSError as exc:
            raise ContextError(f"Unable to launch command: {exc}", step_index=step.index) from exc

        status = STEP_STATUS_OK
        if not result.ok:
            if not step.continue_on_error:
                logger.error(
                    "Step %d failed with exit code %d",
                    step.index,
                    result.returncode,
                    extra={"step": step.index},
                )
                raise StepFailed(step_index=step.index, exit_code=result.returncode, result=result)
            logger.warning(
                "Step %d failed with exit code %d; continuing",
                step.index,
                result.returncode,
                extra={"step": step.index},
            )
            status = STEP_STATUS_IGNORED

        return StepOutcome(
            index=step.index,
            kind=step.kind,
            description=step.describe(),
            status=status,
            user=scoped.user.name,
            directory=str(scoped.directory),
            returncode=result.returncode,
            duration=round(result.duration, 3),
        )
