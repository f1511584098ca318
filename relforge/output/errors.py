"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from relforge.core.errors import ErrorCode
from relforge.output.console import Style
from relforge.services.release.errors import (
    ConfigError,
    DiscoveryError,
    PlanError,
    PublishError,
    ReleaseFailure,
    TagConflictError,
    TemplateError,
)
from relforge.services.release.tags import KNOWN_TOKENS

if TYPE_CHECKING:
    from relforge.output.console import ConsoleProtocol

__all__ = ["print_release_failure", "release_exit_code"]


def print_release_failure(error: ReleaseFailure, console: ConsoleProtocol) -> None:
    """Print a release error to console with appropriate formatting."""
    match error:
        case ConfigError(message=message, hint=hint):
            console.error(f"config: {message}")
            if hint:
                console.print(f"hint: {hint}", Style.DIM)
        case TemplateError(template=template, message=message, token=token):
            console.error(f"template {template!r}: {message}")
            if token is not None:
                known = ", ".join(f"{{{t}}}" for t in sorted(KNOWN_TOKENS))
                console.print(f"hint: known tokens: {known}", Style.DIM)
        case PlanError(message=message, hint=hint):
            console.error(f"plan: {message}")
            if hint:
                console.print(f"hint: {hint}", Style.DIM)
        case DiscoveryError(message=message, hint=hint):
            console.error(f"discovery: {message}")
            if hint:
                console.print(f"hint: {hint}", Style.DIM)
        case TagConflictError(tag=tag, message=message):
            console.error(message)
            console.print(
                f"hint: delete {tag} or set GitHubTagConflictPolicy to Reuse", Style.DIM
            )
        case PublishError(kind=kind, message=message, hint=hint):
            console.error(f"{kind}: {message}")
            if hint:
                console.print(f"hint: {hint}", Style.DIM)


def release_exit_code(error: ReleaseFailure) -> int:
    """Get exit code for a release error."""
    match error:
        case ConfigError() | TemplateError() | PlanError():
            return int(ErrorCode.USER_ERROR)
        case DiscoveryError():
            return int(ErrorCode.IO_ERROR)
        case TagConflictError():
            return int(ErrorCode.PUBLISH_ERROR)
        case PublishError(kind="probe"):
            return int(ErrorCode.NETWORK_ERROR)
        case PublishError():
            return int(ErrorCode.PUBLISH_ERROR)
