"""Error types for release planning and publishing.

Each error is a frozen value; ``ReleaseFailure`` is the closed union the CLI
matches on to pick a message and an exit code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Malformed or contradictory configuration. Always fatal, before any remote call."""

    message: str
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class TemplateError:
    """A tag or release-name template cannot be rendered."""

    template: str
    message: str
    token: str | None = None


@dataclass(frozen=True, slots=True)
class PlanError:
    """A plan is impossible for the discovered state. Planning is all-or-nothing."""

    message: str
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class DiscoveryError:
    message: str
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class TagConflictError:
    """The tag already exists and the conflict policy is Fail."""

    tag: str
    message: str


@dataclass(frozen=True, slots=True)
class PublishError:
    """A remote (or pack) call failed."""

    kind: Literal["pack", "nuget", "github", "probe", "cancelled"]
    message: str
    hint: str | None = None


PlanningFailure = ConfigError | TemplateError | PlanError
ReleaseFailure = (
    ConfigError | TemplateError | PlanError | DiscoveryError | TagConflictError | PublishError
)


def pretty(error: ReleaseFailure) -> str:
    match error:
        case ConfigError(message=message, hint=hint) | PlanError(message=message, hint=hint):
            return f"{message} (hint: {hint})" if hint else message
        case DiscoveryError(message=message, hint=hint) | PublishError(
            message=message, hint=hint
        ):
            return f"{message} (hint: {hint})" if hint else message
        case TemplateError(template=template, message=message):
            return f"{message} in template {template!r}"
        case TagConflictError(message=message):
            return message
