from __future__ import annotations

from collections.abc import Mapping, Sequence
from fnmatch import fnmatchcase

from relforge.core.result import Err, Ok, Result
from relforge.services.release.errors import ConfigError, PlanError
from relforge.services.release.model import (
    AboveLastPublished,
    ExactVersion,
    ExpectedVersionEntry,
    IncludeMode,
    MatchManifest,
    Mismatch,
    ProjectRecord,
    SteppedVersion,
    VersionResolution,
)
from relforge.services.release.semver import SemVer, is_step_pattern, parse_version, step_version


MANIFEST_RULE = "manifest"
ABOVE_PUBLISHED_RULE = "above-published"


def parse_expected_entry(text: str) -> Result[ExpectedVersionEntry, ConfigError]:
    raw = text.strip()
    lowered = raw.lower()
    if lowered == MANIFEST_RULE:
        return Ok(MatchManifest())
    if lowered == ABOVE_PUBLISHED_RULE:
        return Ok(AboveLastPublished())
    if is_step_pattern(raw):
        return Ok(SteppedVersion(pattern=raw))

    exact = parse_version(raw)
    if exact is None:
        return Err(
            ConfigError(
                message=f"invalid expected version: {raw!r}",
                hint=f"use a version (1.2.3), an X-pattern (1.2.X), "
                f"'{MANIFEST_RULE}' or '{ABOVE_PUBLISHED_RULE}'",
            )
        )
    return Ok(ExactVersion(version=exact))


def _match_entry(
    name: str,
    expected: Mapping[str, ExpectedVersionEntry],
    *,
    use_wildcards: bool,
) -> str | None:
    lowered = name.lower()
    for key in sorted(expected):
        if key.lower() == lowered:
            return key
    if not use_wildcards:
        return None
    # Most specific (longest) pattern wins; ties break on the pattern text.
    for key in sorted(expected, key=lambda k: (-len(k), k)):
        if fnmatchcase(lowered, key.lower()):
            return key
    return None


def _apply_rule(
    project: ProjectRecord, rule: ExpectedVersionEntry
) -> Result[tuple[SemVer, Mismatch | None], PlanError]:
    match rule:
        case ExactVersion(version=version):
            if version != project.version:
                mismatch = Mismatch(
                    project=project.name,
                    expected=str(version),
                    discovered=str(project.version),
                    reason="discovered version differs from expected version",
                )
                return Ok((version, mismatch))
            return Ok((version, None))
        case SteppedVersion(pattern=pattern):
            stepped = step_version(pattern, project.last_published)
            if stepped is None:
                return Err(
                    PlanError(
                        message=f"{project.name}: pattern {pattern} cannot step past "
                        f"the last published version {project.last_published}",
                        hint="raise the fixed segments of the pattern",
                    )
                )
            return Ok((stepped, None))
        case MatchManifest():
            return Ok((project.version, None))
        case AboveLastPublished():
            last = project.last_published
            if last is not None and project.version <= last:
                mismatch = Mismatch(
                    project=project.name,
                    expected=f"> {last}",
                    discovered=str(project.version),
                    reason="version is not greater than the last published version",
                )
                return Ok((project.version, mismatch))
            return Ok((project.version, None))


def needs_published_version(
    discovered: Sequence[ProjectRecord],
    expected: Mapping[str, ExpectedVersionEntry],
    include_mode: IncludeMode,
    *,
    global_expected: ExpectedVersionEntry | None = None,
    use_wildcards: bool = False,
) -> tuple[ProjectRecord, ...]:
    """Projects whose rule compares against the last published version."""
    out: list[ProjectRecord] = []
    for project in sorted(discovered, key=lambda p: p.name.lower()):
        if not project.packable:
            continue
        key = _match_entry(project.name, expected, use_wildcards=use_wildcards)
        rule: ExpectedVersionEntry | None
        if key is not None:
            rule = expected[key]
        elif include_mode == "Explicit":
            continue
        else:
            rule = global_expected
        if isinstance(rule, SteppedVersion | AboveLastPublished):
            out.append(project)
    return tuple(out)


def resolve_versions(
    discovered: Sequence[ProjectRecord],
    expected: Mapping[str, ExpectedVersionEntry],
    include_mode: IncludeMode,
    *,
    global_expected: ExpectedVersionEntry | None = None,
    use_wildcards: bool = False,
) -> Result[VersionResolution, PlanError]:
    """Decide the effective version of every selected project.

    Mismatches are collected, never raised, so a single divergent project does
    not hide problems in the others. The hard failures are duplicate project
    names, an X-pattern that cannot step past the last published version and,
    in Explicit mode, map entries that match nothing.
    """
    projects = sorted(discovered, key=lambda p: (p.name.lower(), p.name))

    seen: set[str] = set()
    for p in projects:
        folded = p.name.lower()
        if folded in seen:
            return Err(
                PlanError(
                    message=f"duplicate project name: {p.name}",
                    hint="exclude one of the projects or rename it",
                )
            )
        seen.add(folded)

    versions: dict[str, SemVer] = {}
    mismatches: list[Mismatch] = []
    excluded: list[str] = []
    used_keys: set[str] = set()

    for project in projects:
        key = _match_entry(project.name, expected, use_wildcards=use_wildcards)
        if key is not None:
            used_keys.add(key)

        if not project.packable:
            excluded.append(project.name)
            continue

        rule: ExpectedVersionEntry | None
        if key is not None:
            rule = expected[key]
        elif include_mode == "Explicit":
            excluded.append(project.name)
            continue
        else:
            rule = global_expected

        if rule is None:
            versions[project.name] = project.version
            continue

        applied = _apply_rule(project, rule)
        if isinstance(applied, Err):
            return applied
        version, mismatch = applied.value
        versions[project.name] = version
        if mismatch is not None:
            mismatches.append(mismatch)

    unmatched = tuple(sorted(k for k in expected if k not in used_keys))
    if include_mode == "Explicit" and unmatched:
        return Err(
            PlanError(
                message=f"expected version map references undiscovered projects: "
                f"{', '.join(unmatched)}",
                hint="fix the map keys or the discovery filters",
            )
        )

    return Ok(
        VersionResolution(
            versions=versions,
            mismatches=tuple(mismatches),
            excluded=tuple(excluded),
            unmatched_entries=unmatched,
        )
    )
