"""Tag templating and tag-conflict resolution.

Templates use ``{Token}`` placeholders. Every token value is computed up
front into a ``TagContext``, so substitution order never matters and the same
token always renders the same way within a run. A placeholder outside the
known set is an error: publishing a literal ``{Projct}`` tag is worse than
stopping.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime

from relforge.core.result import Err, Ok, Result
from relforge.services.release.errors import TagConflictError, TemplateError
from relforge.services.release.model import TagConflictPolicy


TIME_TOKENS: frozenset[str] = frozenset(
    {"Date", "UtcDate", "DateTime", "UtcDateTime", "Timestamp", "UtcTimestamp"}
)
KNOWN_TOKENS: frozenset[str] = frozenset(
    {"Project", "Version", "PrimaryProject", "PrimaryVersion", "Repo", "Repository"}
) | TIME_TOKENS

_PLACEHOLDER_RE = re.compile(r"\{([^{}]*)\}")
_UTC_SUFFIX_RE = re.compile(r"-\d{14}$")


@dataclass(frozen=True, slots=True)
class ReleaseClock:
    """Wall-clock values captured once per run.

    Capturing once keeps every entry of a run on the same date and timestamp,
    and lets tests pin time without patching ``datetime``.
    """

    local: datetime
    utc: datetime

    @staticmethod
    def now() -> ReleaseClock:
        utc = datetime.now(UTC)
        return ReleaseClock(local=utc.astimezone(), utc=utc)

    @staticmethod
    def fixed(utc: datetime) -> ReleaseClock:
        """Clock where local time equals UTC (tests, reproducible plans)."""
        return ReleaseClock(local=utc, utc=utc)

    @property
    def date(self) -> str:
        return self.local.strftime("%Y-%m-%d")

    @property
    def utc_date(self) -> str:
        return self.utc.strftime("%Y-%m-%d")

    @property
    def date_time(self) -> str:
        return self.local.strftime("%Y-%m-%d.%H%M%S")

    @property
    def utc_date_time(self) -> str:
        return self.utc.strftime("%Y-%m-%d.%H%M%S")

    @property
    def timestamp(self) -> str:
        return self.local.strftime("%Y%m%d%H%M%S")

    @property
    def utc_timestamp(self) -> str:
        return self.utc.strftime("%Y%m%d%H%M%S")


@dataclass(frozen=True, slots=True)
class TagContext:
    project: str
    version: str
    primary_project: str
    primary_version: str
    repo: str
    clock: ReleaseClock

    def values(self) -> dict[str, str]:
        return {
            "Project": self.project,
            "Version": self.version,
            "PrimaryProject": self.primary_project,
            "PrimaryVersion": self.primary_version,
            "Repo": self.repo,
            "Repository": self.repo,
            "Date": self.clock.date,
            "UtcDate": self.clock.utc_date,
            "DateTime": self.clock.date_time,
            "UtcDateTime": self.clock.utc_date_time,
            "Timestamp": self.clock.timestamp,
            "UtcTimestamp": self.clock.utc_timestamp,
        }


def template_tokens(template: str) -> tuple[str, ...]:
    return tuple(m.group(1) for m in _PLACEHOLDER_RE.finditer(template))


def uses_time_token(template: str) -> bool:
    return any(token in TIME_TOKENS for token in template_tokens(template))


def validate_template(template: str) -> Result[None, TemplateError]:
    if not template.strip():
        return Err(TemplateError(template=template, message="empty template"))
    for token in template_tokens(template):
        if token not in KNOWN_TOKENS:
            return Err(
                TemplateError(
                    template=template,
                    message=f"unknown token {{{token}}}",
                    token=token,
                )
            )
    return Ok(None)


def render_tag(template: str, context: TagContext) -> Result[str, TemplateError]:
    checked = validate_template(template)
    if isinstance(checked, Err):
        return checked

    values = context.values()
    for token in template_tokens(template):
        if not values[token]:
            return Err(
                TemplateError(
                    template=template,
                    message=f"token {{{token}}} has no value",
                    token=token,
                )
            )

    rendered = _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], template).strip()
    if not rendered:
        return Err(TemplateError(template=template, message="template rendered to an empty tag"))
    return Ok(rendered)


@dataclass(frozen=True, slots=True)
class CreateTag:
    tag: str


@dataclass(frozen=True, slots=True)
class ReuseTag:
    tag: str


TagResolution = CreateTag | ReuseTag


def strip_utc_suffix(tag: str) -> str:
    return _UTC_SUFFIX_RE.sub("", tag)


def append_utc_timestamp(tag: str, utc_timestamp: str) -> str:
    """Suffix a tag with ``-YYYYMMDDHHMMSS``, replacing any previous suffix."""
    return f"{strip_utc_suffix(tag)}-{utc_timestamp}"


def resolve_conflict(
    candidate: str,
    *,
    exists: bool,
    policy: TagConflictPolicy,
    utc_timestamp: str,
) -> Result[TagResolution, TagConflictError]:
    """Apply the conflict policy to a candidate tag.

    AppendUtcTimestamp is single-shot: the suffixed tag is not probed here.
    """
    if not exists:
        return Ok(CreateTag(candidate))

    match policy:
        case "Reuse":
            return Ok(ReuseTag(candidate))
        case "Fail":
            return Err(
                TagConflictError(
                    tag=candidate,
                    message=f"tag already exists: {candidate}",
                )
            )
        case "AppendUtcTimestamp":
            return Ok(CreateTag(append_utc_timestamp(candidate, utc_timestamp)))
