"""Token macro expansion (``$NAME`` / ``${NAME}``) against build metadata."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

import jinja2

from .models import BuildSnapshot

logger = logging.getLogger(__name__)


class MacroEvaluationError(Exception):
    """Raised when a template references an unknown token or is malformed."""


class MacroExpander(Protocol):
    def expand(self, build: BuildSnapshot, workspace: Path | None, template: str) -> str: ...


# ``${NAME}`` is the Jinja variable syntax; block and comment markers are moved
# out of the way so that plain ``{%`` / ``{#`` text renders verbatim.
_ENV = jinja2.Environment(
    variable_start_string="${",
    variable_end_string="}",
    block_start_string="$%{",
    block_end_string="}%$",
    comment_start_string="$#{",
    comment_end_string="}#$",
    undefined=jinja2.StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
)

# ``$$`` → literal ``$``; bare ``$NAME`` → ``${NAME}``
_SHORTHAND_RE = re.compile(r"\$(\$|[A-Za-z_][A-Za-z0-9_]*)")


def _to_jinja(template: str) -> str:
    def _replace(match: re.Match) -> str:
        token = match.group(1)
        if token == "$":
            return '${ "$" }'
        return "${" + token + "}"

    return _SHORTHAND_RE.sub(_replace, template)


def build_variables(build: BuildSnapshot, workspace: Path | None = None) -> dict[str, str]:
    """Variables every build exposes, overlaid with the build's own env."""
    variables = {
        "JOB_NAME": build.job_name,
        "BUILD_NUMBER": str(build.number),
        "BUILD_DISPLAY_NAME": build.full_display_name,
    }
    if build.root_url:
        variables["JENKINS_URL"] = build.root_url
        variables["BUILD_URL"] = build.run_url(build.root_url)
    elif build.url:
        variables["BUILD_URL"] = build.url
    if build.result is not None:
        variables["BUILD_RESULT"] = build.result.value
    if build.parent_job_name:
        variables["PARENT_JOB_NAME"] = build.parent_job_name
    if workspace is not None:
        variables["WORKSPACE"] = str(workspace)
    variables.update(build.env)
    return variables


class EnvironmentMacroExpander:
    """Expands tokens from build variables; unknown tokens are an error."""

    def __init__(self, extra: dict[str, str] | None = None):
        self.extra = extra or {}

    def expand(self, build: BuildSnapshot, workspace: Path | None, template: str) -> str:
        variables = {**build_variables(build, workspace), **self.extra}
        try:
            return _ENV.from_string(_to_jinja(template)).render(variables)
        except jinja2.UndefinedError as exc:
            raise MacroEvaluationError(f"Unrecognized macro in '{template}': {exc}") from exc
        except jinja2.TemplateError as exc:
            raise MacroEvaluationError(f"Malformed macro in '{template}': {exc}") from exc


# ---------------------------------------------------------------------------
# Result type + fallback
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Expansion:
    """Outcome of expanding one template: a value or the error that prevented it."""

    template: str
    value: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def or_else(self, fallback: str | Callable[[], str], message: str) -> str:
        """The expanded value, or the fallback after logging ``message``."""
        if self.error is None:
            return self.value  # type: ignore[return-value]
        logger.warning(message, exc_info=self.error)
        return fallback() if callable(fallback) else fallback


def try_expand(
    expander: MacroExpander,
    build: BuildSnapshot,
    workspace: Path | None,
    template: str,
) -> Expansion:
    try:
        return Expansion(template, value=expander.expand(build, workspace, template))
    except (MacroEvaluationError, OSError) as exc:
        return Expansion(template, error=exc)
