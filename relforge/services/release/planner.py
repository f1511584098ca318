from __future__ import annotations

import heapq
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from relforge.core.result import Err, Ok, Result
from relforge.services.release.errors import ConfigError, PlanError, PlanningFailure
from relforge.services.release.model import (
    Mismatch,
    ProjectRecord,
    ReleaseMode,
    ReleasePlan,
    ReleasePlanEntry,
    TagConflictPolicy,
    VersionMismatchPolicy,
    VersionResolution,
)
from relforge.services.release.semver import SemVer
from relforge.services.release.tags import (
    ReleaseClock,
    TagContext,
    render_tag,
    uses_time_token,
    validate_template,
)


@dataclass(frozen=True, slots=True)
class PlanSettings:
    mode: ReleaseMode = "Single"
    repo: str = "repository"
    tag_template: str | None = None
    release_name_template: str | None = None
    include_project_name_in_tag: bool = True
    primary_project: str | None = None
    conflict_policy: TagConflictPolicy = "Reuse"
    mismatch_policy: VersionMismatchPolicy = "Warn"
    publish_nuget: bool = False
    publish_github: bool = False

    def effective_tag_template(self) -> str:
        if self.tag_template:
            return self.tag_template
        if self.mode == "PerProject" and self.include_project_name_in_tag:
            return "{Project}-v{Version}"
        return "v{Version}"


def publish_order(projects: Sequence[ProjectRecord]) -> tuple[ProjectRecord, ...]:
    """Order projects so in-run dependencies are published first.

    Ties break on project name. A dependency cycle falls back to plain name
    order rather than failing the plan.
    """
    by_name = {p.name.lower(): p for p in projects}
    deps: dict[str, set[str]] = {
        key: {d.lower() for d in p.dependencies if d.lower() in by_name and d.lower() != key}
        for key, p in by_name.items()
    }
    dependents: dict[str, set[str]] = {key: set() for key in by_name}
    for key, needs in deps.items():
        for dep in needs:
            dependents[dep].add(key)

    remaining = {key: len(needs) for key, needs in deps.items()}
    ready = [key for key, count in remaining.items() if count == 0]
    heapq.heapify(ready)

    ordered: list[ProjectRecord] = []
    while ready:
        key = heapq.heappop(ready)
        ordered.append(by_name[key])
        for child in sorted(dependents[key]):
            remaining[child] -= 1
            if remaining[child] == 0:
                heapq.heappush(ready, child)

    if len(ordered) != len(by_name):
        return tuple(sorted(projects, key=lambda p: p.name.lower()))
    return tuple(ordered)


def _dedupe(items: Sequence[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return tuple(out)


def _artefacts(
    project: ProjectRecord, version: SemVer
) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Package and asset paths renamed for the version the project is packed at."""
    text = version.nuget_text()
    package_id = project.identifier or project.name
    packages = tuple(
        str(Path(p).with_name(f"{package_id}.{text}.nupkg")) for p in project.packages
    )
    assets = tuple(
        str(Path(a).with_name(f"{project.name}.{text}{Path(a).suffix}"))
        for a in project.release_assets
    )
    return packages, assets


def _find_primary(
    primary: str | None, selected: Sequence[ProjectRecord]
) -> Result[ProjectRecord | None, PlanError]:
    if not primary:
        return Ok(None)
    for p in selected:
        if p.name.lower() == primary.lower():
            return Ok(p)
    return Err(
        PlanError(
            message=f"primary project is not among the selected projects: {primary}",
            hint="check GitHubPrimaryProject against the discovery filters",
        )
    )


def _check_mismatches(
    mismatches: tuple[Mismatch, ...],
    *,
    policy: VersionMismatchPolicy,
    primary: ProjectRecord | None,
    mode: ReleaseMode,
) -> Result[None, PlanError]:
    if not mismatches or policy == "Warn":
        return Ok(None)

    blocking = mismatches
    if policy == "BlockPrimary" and mode == "Single" and primary is not None:
        blocking = tuple(m for m in mismatches if m.project.lower() == primary.name.lower())

    if not blocking:
        return Ok(None)
    return Err(
        PlanError(
            message="version mismatch blocks the release: "
            + "; ".join(m.pretty() for m in blocking),
            hint="fix the versions or set VersionMismatchPolicy to Warn",
        )
    )


def _render_names(
    settings: PlanSettings, context: TagContext
) -> Result[tuple[str, str], PlanningFailure]:
    tag = render_tag(settings.effective_tag_template(), context)
    if isinstance(tag, Err):
        return tag
    if not settings.release_name_template:
        return Ok((tag.value, tag.value))
    name = render_tag(settings.release_name_template, context)
    if isinstance(name, Err):
        return name
    return Ok((tag.value, name.value))


def _plan_single(
    selected: tuple[ProjectRecord, ...],
    versions: dict[str, SemVer],
    resolution: VersionResolution,
    primary: ProjectRecord | None,
    settings: PlanSettings,
    clock: ReleaseClock,
) -> Result[tuple[ReleasePlanEntry, ...], PlanningFailure]:
    template = settings.effective_tag_template()
    by_name = sorted(selected, key=lambda p: p.name.lower())
    distinct = {versions[p.name] for p in selected}

    version: str | None
    if primary is not None:
        version = str(versions[primary.name])
    elif len(distinct) == 1:
        version = str(versions[by_name[0].name])
    elif uses_time_token(template):
        version = None
    else:
        listed = ", ".join(f"{p.name}@{versions[p.name]}" for p in by_name)
        return Err(
            ConfigError(
                message=f"project versions diverge in Single release mode: {listed}",
                hint="set GitHubPrimaryProject or use a date/timestamp token in GitHubTagTemplate",
            )
        )

    context = TagContext(
        project=settings.repo,
        version=version or clock.date,
        primary_project=primary.name if primary is not None else settings.repo,
        primary_version=version or clock.date,
        repo=settings.repo,
        clock=clock,
    )
    names = _render_names(settings, context)
    if isinstance(names, Err):
        return names
    tag, release_name = names.value

    project_names = tuple(p.name for p in selected)
    artefacts = [_artefacts(p, versions[p.name]) for p in selected]
    entry = ReleasePlanEntry(
        key=settings.repo,
        projects=project_names,
        version=version,
        tag=tag,
        release_name=release_name,
        packages=_dedupe([pkg for packages, _ in artefacts for pkg in packages]),
        release_assets=_dedupe([a for _, assets in artefacts for a in assets]),
        publish_nuget=settings.publish_nuget,
        publish_github=settings.publish_github,
        warnings=resolution.mismatches_for(project_names),
        project_versions=tuple(str(versions[n]) for n in project_names),
    )
    return Ok((entry,))


def _plan_per_project(
    selected: tuple[ProjectRecord, ...],
    versions: dict[str, SemVer],
    resolution: VersionResolution,
    primary: ProjectRecord | None,
    settings: PlanSettings,
    clock: ReleaseClock,
) -> Result[tuple[ReleasePlanEntry, ...], PlanningFailure]:
    entries: list[ReleasePlanEntry] = []
    tags_seen: dict[str, str] = {}

    for project in selected:
        version = str(versions[project.name])
        context = TagContext(
            project=project.name,
            version=version,
            primary_project=primary.name if primary is not None else project.name,
            primary_version=version,
            repo=settings.repo,
            clock=clock,
        )
        names = _render_names(settings, context)
        if isinstance(names, Err):
            return names
        tag, release_name = names.value

        other = tags_seen.get(tag)
        if other is not None:
            return Err(
                PlanError(
                    message=f"projects {other} and {project.name} render the same tag: {tag}",
                    hint="include {Project} in GitHubTagTemplate",
                )
            )
        tags_seen[tag] = project.name
        packages, assets = _artefacts(project, versions[project.name])

        entries.append(
            ReleasePlanEntry(
                key=project.name,
                projects=(project.name,),
                version=version,
                tag=tag,
                release_name=release_name,
                packages=packages,
                release_assets=assets,
                publish_nuget=settings.publish_nuget,
                publish_github=settings.publish_github,
                warnings=resolution.mismatches_for((project.name,)),
                project_versions=(version,),
            )
        )

    return Ok(tuple(entries))


def plan_release(
    projects: Sequence[ProjectRecord],
    resolution: VersionResolution,
    settings: PlanSettings,
    clock: ReleaseClock,
) -> Result[ReleasePlan, PlanningFailure]:
    """Build the release plan. Pure: no probing, no I/O.

    Conflict resolution against the remote tag store is a separate phase run
    by the executor right before each publish.
    """
    for template in (settings.effective_tag_template(), settings.release_name_template):
        if template is None:
            continue
        checked = validate_template(template)
        if isinstance(checked, Err):
            return checked

    selected = publish_order([p for p in projects if p.name in resolution.versions])
    if not selected:
        return Err(
            PlanError(
                message="no projects selected for release",
                hint="check IncludeProjects/ExcludeProjects and the expected version map",
            )
        )

    primary_r = _find_primary(settings.primary_project, selected)
    if isinstance(primary_r, Err):
        return primary_r
    primary = primary_r.value

    selected_names = tuple(p.name for p in selected)
    blocked = _check_mismatches(
        resolution.mismatches_for(selected_names),
        policy=settings.mismatch_policy,
        primary=primary,
        mode=settings.mode,
    )
    if isinstance(blocked, Err):
        return blocked

    versions = resolution.versions
    match settings.mode:
        case "Single":
            entries = _plan_single(selected, versions, resolution, primary, settings, clock)
        case "PerProject":
            entries = _plan_per_project(selected, versions, resolution, primary, settings, clock)

    if isinstance(entries, Err):
        return entries

    return Ok(
        ReleasePlan(
            mode=settings.mode,
            conflict_policy=settings.conflict_policy,
            repo=settings.repo,
            entries=entries.value,
            excluded=resolution.excluded,
        )
    )
