STEP_KIND_RUN = "run"
STEP_KIND_USER = "user"
STEP_KIND_WORKDIR = "workdir"
STEP_KIND_ENV = "env"
STEP_KIND_SHELL = "shell"

STEP_KINDS = (
    STEP_KIND_RUN,
    STEP_KIND_USER,
    STEP_KIND_WORKDIR,
    STEP_KIND_ENV,
    STEP_KIND_SHELL,
)

RUN_STATUS_SUCCEEDED = "succeeded"
RUN_STATUS_DRY_RUN = "dry-run"

STEP_STATUS_OK = "ok"
STEP_STATUS_IGNORED = "ignored"
STEP_STATUS_SKIPPED = "skipped"
STEP_STATUS_APPLIED = "applied"

DEFAULT_SHELL = ("/bin/sh", "-c")
