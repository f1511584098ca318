from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal

from relforge.services.release.semver import SemVer


ReleaseMode = Literal["Single", "PerProject"]
IncludeMode = Literal["All", "Explicit"]
TagConflictPolicy = Literal["Reuse", "Fail", "AppendUtcTimestamp"]
VersionMismatchPolicy = Literal["Warn", "BlockPrimary", "BlockAny"]

RELEASE_MODES: tuple[ReleaseMode, ...] = ("Single", "PerProject")
INCLUDE_MODES: tuple[IncludeMode, ...] = ("All", "Explicit")
CONFLICT_POLICIES: tuple[TagConflictPolicy, ...] = ("Reuse", "Fail", "AppendUtcTimestamp")
MISMATCH_POLICIES: tuple[VersionMismatchPolicy, ...] = ("Warn", "BlockPrimary", "BlockAny")


@dataclass(frozen=True, slots=True)
class ProjectRecord:
    """A discovered project. Immutable once discovery completes."""

    name: str
    version: SemVer
    packages: tuple[str, ...] = ()
    release_assets: tuple[str, ...] = ()
    identifier: str | None = None
    last_published: SemVer | None = None
    # Names of other discovered projects this one references.
    dependencies: tuple[str, ...] = ()
    packable: bool = True
    source_path: str | None = None


# Expected version rules (closed set).


@dataclass(frozen=True, slots=True)
class ExactVersion:
    version: SemVer


@dataclass(frozen=True, slots=True)
class SteppedVersion:
    pattern: str  # e.g. 1.2.X


@dataclass(frozen=True, slots=True)
class MatchManifest:
    pass


@dataclass(frozen=True, slots=True)
class AboveLastPublished:
    pass


ExpectedVersionEntry = ExactVersion | SteppedVersion | MatchManifest | AboveLastPublished


@dataclass(frozen=True, slots=True)
class Mismatch:
    """Non-fatal version divergence, surfaced for operator review."""

    project: str
    expected: str
    discovered: str
    reason: str

    def pretty(self) -> str:
        return f"{self.project}: {self.reason} (expected {self.expected}, found {self.discovered})"


@dataclass(frozen=True, slots=True)
class VersionResolution:
    versions: dict[str, SemVer]  # sorted by project name
    mismatches: tuple[Mismatch, ...]
    excluded: tuple[str, ...]
    unmatched_entries: tuple[str, ...]

    def mismatches_for(self, names: tuple[str, ...]) -> tuple[Mismatch, ...]:
        wanted = set(names)
        return tuple(m for m in self.mismatches if m.project in wanted)


@dataclass(frozen=True, slots=True)
class ReleasePlanEntry:
    """Unit of work for the publish loop.

    Never mutated: tag rewriting and packing produce new entries so the
    original plan stays auditable.
    """

    key: str
    projects: tuple[str, ...]
    version: str | None
    tag: str
    release_name: str
    packages: tuple[str, ...]
    release_assets: tuple[str, ...]
    publish_nuget: bool
    publish_github: bool
    warnings: tuple[Mismatch, ...] = ()
    # Resolved version of each project, aligned with ``projects``.
    project_versions: tuple[str, ...] = ()

    def versions_by_project(self) -> dict[str, str]:
        return dict(zip(self.projects, self.project_versions, strict=False))

    def with_tag(self, tag: str) -> ReleasePlanEntry:
        return replace(self, tag=tag, release_name=self.release_name.replace(self.tag, tag))

    def with_artefacts(
        self, *, packages: tuple[str, ...], release_assets: tuple[str, ...]
    ) -> ReleasePlanEntry:
        return replace(self, packages=packages, release_assets=release_assets)


@dataclass(frozen=True, slots=True)
class ReleasePlan:
    mode: ReleaseMode
    conflict_policy: TagConflictPolicy
    repo: str
    entries: tuple[ReleasePlanEntry, ...]
    excluded: tuple[str, ...] = ()

    @property
    def warnings(self) -> tuple[Mismatch, ...]:
        return tuple(w for e in self.entries for w in e.warnings)
