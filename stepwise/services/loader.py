from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from jsonschema import ValidationError
from jsonschema import validate as jsonschema_validate
from pydantic import ValidationError as ModelValidationError
import yaml

from stepwise.constants import (
    STEP_KIND_ENV,
    STEP_KIND_RUN,
    STEP_KIND_SHELL,
    STEP_KIND_USER,
    STEP_KIND_WORKDIR,
    STEP_KINDS,
)
from stepwise.models import ProvisioningPlan, ProvisioningStep
from stepwise.services.errors import ParseError
from stepwise.services.recipe import parse_recipe

logger = logging.getLogger(__name__)

_NON_EMPTY = {"type": "string", "minLength": 1, "pattern": r"\S"}
_ENV_MAP = {
    "type": "object",
    "propertyNames": {"pattern": r"^[A-Za-z_][A-Za-z0-9_]*$"},
    "additionalProperties": {"type": "string"},
}
_SHELL_PREFIX = {"type": "array", "items": _NON_EMPTY, "minItems": 1}

STEP_SCHEMAS: dict[str, dict[str, Any]] = {
    STEP_KIND_RUN: {
        "type": "object",
        "properties": {
            "run": {
                "oneOf": [
                    _NON_EMPTY,
                    {"type": "array", "items": _NON_EMPTY, "minItems": 1},
                ]
            },
            "name": {"type": "string"},
            "cwd": _NON_EMPTY,
            "as_user": _NON_EMPTY,
            "env": _ENV_MAP,
            "shell": _SHELL_PREFIX,
            "continue_on_error": {"type": "boolean"},
        },
        "required": ["run"],
        "additionalProperties": False,
    },
    STEP_KIND_USER: {
        "type": "object",
        "properties": {"user": _NON_EMPTY, "name": {"type": "string"}},
        "required": ["user"],
        "additionalProperties": False,
    },
    STEP_KIND_WORKDIR: {
        "type": "object",
        "properties": {"workdir": _NON_EMPTY, "name": {"type": "string"}},
        "required": ["workdir"],
        "additionalProperties": False,
    },
    STEP_KIND_ENV: {
        "type": "object",
        "properties": {"env": {**_ENV_MAP, "minProperties": 1}, "name": {"type": "string"}},
        "required": ["env"],
        "additionalProperties": False,
    },
    STEP_KIND_SHELL: {
        "type": "object",
        "properties": {"shell": _SHELL_PREFIX, "name": {"type": "string"}},
        "required": ["shell"],
        "additionalProperties": False,
    },
}

PLAN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "base_image": _NON_EMPTY,
        "shell": _SHELL_PREFIX,
        "env": _ENV_MAP,
        "steps": {"type": "array", "items": {"type": "object"}},
    },
    "required": ["steps"],
    "additionalProperties": False,
}

RECIPE_SUFFIXES = (".dockerfile", ".recipe")


def check_directory_reference(raw: str) -> None:
    """Reject directory references that can never be resolved."""
    if "\x00" in raw:
        raise ValueError("contains a NUL byte")
    if raw.startswith("~") and raw != "~" and not raw.startswith("~/"):
        raise ValueError(f"unsupported home reference {raw!r}; only '~' and '~/...' are resolvable")


def _location(exc: ValidationError) -> str:
    path = "".join(f"[{p!r}]" if isinstance(p, str) else f"[{p}]" for p in exc.absolute_path)
    return path


def _step_kind(raw: dict[str, Any], *, position: int) -> str:
    kinds = [kind for kind in STEP_KINDS if kind in raw]
    if STEP_KIND_RUN in kinds:
        # env and shell are per-step overrides on run steps.
        return STEP_KIND_RUN
    if len(kinds) != 1:
        expected = ", ".join(STEP_KINDS)
        if not kinds:
            raise ParseError(f"steps[{position}]: step must define one of: {expected}")
        raise ParseError(f"steps[{position}]: step defines more than one of: {', '.join(kinds)}")
    return kinds[0]


def parse_step(raw: Any, *, position: int) -> ProvisioningStep:
    if not isinstance(raw, dict):
        raise ParseError(f"steps[{position}]: step must be a mapping, got {type(raw).__name__}")
    kind = _step_kind(raw, position=position)
    if kind == STEP_KIND_WORKDIR and raw["workdir"] is None:
        # YAML reads an unquoted `~` as null.
        raw = {**raw, "workdir": "~"}
    try:
        jsonschema_validate(instance=raw, schema=STEP_SCHEMAS[kind])
    except ValidationError as exc:
        raise ParseError(f"steps[{position}]{_location(exc)}: {exc.message}") from exc

    fields: dict[str, Any] = {"index": position, "kind": kind, "name": raw.get("name")}
    if kind == STEP_KIND_RUN:
        command = raw["run"]
        if isinstance(command, list):
            fields["argv"] = list(command)
        else:
            fields["command"] = command
        fields.update(
            working_directory=raw.get("cwd"),
            run_as_user=raw.get("as_user"),
            env=dict(raw.get("env") or {}),
            shell=raw.get("shell"),
            continue_on_error=raw.get("continue_on_error", False),
        )
    elif kind == STEP_KIND_USER:
        fields["run_as_user"] = raw["user"].strip()
    elif kind == STEP_KIND_WORKDIR:
        fields["working_directory"] = raw["workdir"]
    elif kind == STEP_KIND_ENV:
        fields["env"] = dict(raw["env"])
    else:
        fields["shell"] = list(raw["shell"])

    if fields.get("working_directory") is not None:
        try:
            check_directory_reference(fields["working_directory"])
        except ValueError as exc:
            raise ParseError(f"steps[{position}]: working directory {exc}") from exc

    try:
        return ProvisioningStep(**fields)
    except ModelValidationError as exc:
        raise ParseError(f"steps[{position}]: {exc}") from exc


def parse_plan(document: Any) -> ProvisioningPlan:
    """Build a plan from a decoded document: a mapping with `steps`, or a bare step list."""
    if document is None:
        raise ParseError("Plan document is empty")
    if isinstance(document, list):
        document = {"steps": document}
    if not isinstance(document, dict):
        raise ParseError(f"Plan must be a mapping or a list of steps, got {type(document).__name__}")
    try:
        jsonschema_validate(instance=document, schema=PLAN_SCHEMA)
    except ValidationError as exc:
        raise ParseError(f"plan{_location(exc)}: {exc.message}") from exc

    steps = [parse_step(raw, position=i) for i, raw in enumerate(document["steps"])]
    plan = ProvisioningPlan(
        base_image=document.get("base_image"),
        shell=document.get("shell"),
        env=dict(document.get("env") or {}),
        steps=steps,
    )
    logger.debug("Parsed plan with %d steps (base_image=%s)", len(steps), plan.base_image)
    return plan


def load_plan_text(text: str) -> ProvisioningPlan:
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ParseError(f"Invalid YAML: {exc}") from exc
    return parse_plan(document)


def is_recipe_path(path: Path) -> bool:
    return path.name == "Dockerfile" or path.suffix.lower() in RECIPE_SUFFIXES


def load_plan_file(path: Path) -> ProvisioningPlan:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ParseError(f"Unable to read plan {path}: {exc}") from exc

    if is_recipe_path(path):
        logger.info("Reading recipe %s", path)
        return parse_plan(parse_recipe(text))
    logger.info("Reading plan %s", path)
    return load_plan_text(text)
