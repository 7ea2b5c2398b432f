"""Read the Dockerfile instruction subset used by build recipes into a plan document.

Only instructions that change what runs, or under which user, directory,
environment or shell it runs, are translated. Image metadata is skipped, and
anything that needs a build context or build arguments is rejected.
"""
from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import shlex
from typing import Any, Iterator

from stepwise.services.errors import ParseError

logger = logging.getLogger(__name__)

_METADATA_INSTRUCTIONS = frozenset(
    {
        "CMD",
        "ENTRYPOINT",
        "LABEL",
        "EXPOSE",
        "VOLUME",
        "STOPSIGNAL",
        "HEALTHCHECK",
        "MAINTAINER",
        "ONBUILD",
    }
)


@dataclass(frozen=True)
class Instruction:
    keyword: str
    arguments: str
    line: int


def iter_instructions(text: str) -> Iterator[Instruction]:
    """Yield logical instructions, joining `\\` continuations and dropping comments."""
    buffer: list[str] = []
    start_line = 0
    for lineno, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.strip()
        if not buffer:
            if not stripped or stripped.startswith("#"):
                continue
            start_line = lineno
        elif not stripped or stripped.startswith("#"):
            # Blank and comment lines inside a continuation are removed, not terminators.
            continue

        if stripped.endswith("\\"):
            buffer.append(stripped[:-1].strip())
            continue
        buffer.append(stripped)
        yield _split_instruction(" ".join(part for part in buffer if part), line=start_line)
        buffer = []

    if buffer:
        joined = " ".join(part for part in buffer if part)
        if joined:
            yield _split_instruction(joined, line=start_line)


def _split_instruction(logical: str, *, line: int) -> Instruction:
    keyword, *rest = logical.split(None, 1)
    arguments = rest[0].strip() if rest else ""
    return Instruction(keyword=keyword.upper(), arguments=arguments, line=line)


def _json_array(instruction: Instruction) -> list[str] | None:
    if not instruction.arguments.startswith("["):
        return None
    try:
        parsed = json.loads(instruction.arguments)
    except json.JSONDecodeError:
        # Not JSON after all, e.g. `RUN [ -d build ] && make`; treated as shell form.
        return None
    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        raise ParseError(f"line {instruction.line}: {instruction.keyword} JSON form must be an array of strings")
    return parsed


def _require_arguments(instruction: Instruction) -> str:
    if not instruction.arguments:
        raise ParseError(f"line {instruction.line}: {instruction.keyword} requires an argument")
    return instruction.arguments


def _parse_from(instruction: Instruction) -> str:
    tokens = _require_arguments(instruction).split()
    if len(tokens) == 3 and tokens[1].upper() == "AS":
        return tokens[0]
    if len(tokens) != 1:
        raise ParseError(f"line {instruction.line}: expected 'FROM image [AS name]'")
    return tokens[0]


def _parse_env(instruction: Instruction) -> dict[str, str]:
    arguments = _require_arguments(instruction)
    try:
        tokens = shlex.split(arguments)
    except ValueError as exc:
        raise ParseError(f"line {instruction.line}: {exc}") from exc

    if "=" not in tokens[0]:
        # Legacy `ENV key value with spaces` form.
        key, _, value = arguments.partition(" ")
        return {key: value.strip()}

    values: dict[str, str] = {}
    for token in tokens:
        key, sep, value = token.partition("=")
        if not sep or not key:
            raise ParseError(f"line {instruction.line}: expected KEY=VALUE, got {token!r}")
        values[key] = value
    return values


def _parse_user(instruction: Instruction) -> str:
    user, _, group = _require_arguments(instruction).partition(":")
    if group:
        logger.warning("line %d: ignoring group %r in USER instruction", instruction.line, group)
    return user


def parse_recipe(text: str) -> dict[str, Any]:
    """Convert recipe text into the document accepted by the plan loader."""
    document: dict[str, Any] = {"steps": []}
    steps: list[dict[str, Any]] = document["steps"]

    for instruction in iter_instructions(text):
        keyword = instruction.keyword
        if keyword == "FROM":
            if "base_image" in document:
                raise ParseError(f"line {instruction.line}: multi-stage recipes are not supported")
            document["base_image"] = _parse_from(instruction)
        elif keyword == "RUN":
            exec_form = _json_array(instruction)
            steps.append({"run": exec_form if exec_form is not None else _require_arguments(instruction)})
        elif keyword == "USER":
            steps.append({"user": _parse_user(instruction)})
        elif keyword == "WORKDIR":
            steps.append({"workdir": _require_arguments(instruction)})
        elif keyword == "ENV":
            steps.append({"env": _parse_env(instruction)})
        elif keyword == "SHELL":
            shell = _json_array(instruction)
            if not shell:
                raise ParseError(f"line {instruction.line}: SHELL requires a non-empty JSON array of strings")
            steps.append({"shell": shell})
        elif keyword in _METADATA_INSTRUCTIONS:
            logger.warning("line %d: skipping image metadata instruction %s", instruction.line, keyword)
        else:
            raise ParseError(f"line {instruction.line}: unsupported instruction {keyword}")

    logger.debug("Converted recipe into %d steps", len(steps))
    return document
