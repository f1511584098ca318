from __future__ import annotations

import json
from pathlib import Path

from relforge.core.result import Err, Ok, Result
from relforge.core.structured import (
    as_obj_list,
    as_str_dict,
    get_bool,
    get_int,
    get_list,
    get_str,
    get_str_list,
)
from relforge.platform.files import atomic_write_text
from relforge.services.release.errors import ConfigError
from relforge.services.release.model import (
    CONFLICT_POLICIES,
    RELEASE_MODES,
    Mismatch,
    ReleasePlan,
    ReleasePlanEntry,
)

PLAN_SCHEMA = 1


def plan_to_dict(plan: ReleasePlan) -> dict[str, object]:
    return {
        "schema": PLAN_SCHEMA,
        "mode": plan.mode,
        "conflict_policy": plan.conflict_policy,
        "repo": plan.repo,
        "excluded": list(plan.excluded),
        "entries": [
            {
                "key": e.key,
                "projects": list(e.projects),
                "version": e.version,
                "tag": e.tag,
                "release_name": e.release_name,
                "packages": list(e.packages),
                "release_assets": list(e.release_assets),
                "publish_nuget": e.publish_nuget,
                "publish_github": e.publish_github,
                "project_versions": list(e.project_versions),
                "warnings": [
                    {
                        "project": w.project,
                        "expected": w.expected,
                        "discovered": w.discovered,
                        "reason": w.reason,
                    }
                    for w in e.warnings
                ],
            }
            for e in plan.entries
        ],
    }


def write_plan_file(*, path: Path, plan: ReleasePlan) -> Result[None, ConfigError]:
    payload = plan_to_dict(plan)
    try:
        atomic_write_text(path, json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        return Err(ConfigError(message=f"failed to write plan file: {e}", hint=str(path)))
    return Ok(None)


def _read_warnings(obj: object) -> tuple[Mismatch, ...]:
    items = as_obj_list(obj) or []
    out: list[Mismatch] = []
    for item in items:
        d = as_str_dict(item)
        if d is None:
            continue
        project = get_str(d, "project")
        if project is None:
            continue
        out.append(
            Mismatch(
                project=project,
                expected=get_str(d, "expected") or "",
                discovered=get_str(d, "discovered") or "",
                reason=get_str(d, "reason") or "",
            )
        )
    return tuple(out)


def _read_entry(obj: object, index: int, path: Path) -> Result[ReleasePlanEntry, ConfigError]:
    d = as_str_dict(obj)
    if d is None:
        return Err(ConfigError(message=f"entries[{index}] must be an object", hint=str(path)))

    key = get_str(d, "key")
    tag = get_str(d, "tag")
    projects = get_str_list(d, "projects")
    if key is None or tag is None or not projects:
        return Err(
            ConfigError(
                message=f"entries[{index}] needs key, tag and projects",
                hint=str(path),
            )
        )

    project_versions = get_str_list(d, "project_versions")
    if project_versions and len(project_versions) != len(projects):
        return Err(
            ConfigError(
                message=f"entries[{index}] project_versions does not match projects",
                hint=str(path),
            )
        )

    return Ok(
        ReleasePlanEntry(
            key=key,
            projects=projects,
            version=get_str(d, "version"),
            tag=tag,
            release_name=get_str(d, "release_name") or tag,
            packages=get_str_list(d, "packages"),
            release_assets=get_str_list(d, "release_assets"),
            publish_nuget=get_bool(d, "publish_nuget") or False,
            publish_github=get_bool(d, "publish_github") or False,
            warnings=_read_warnings(d.get("warnings")),
            project_versions=project_versions,
        )
    )


def read_plan_file(*, path: Path) -> Result[ReleasePlan, ConfigError]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        return Err(ConfigError(message=f"failed to read plan file: {e}", hint=str(path)))

    try:
        obj: object = json.loads(text)
    except json.JSONDecodeError as e:
        return Err(ConfigError(message=f"invalid JSON in plan file: {e}", hint=str(path)))

    data = as_str_dict(obj)
    if data is None:
        return Err(ConfigError(message="plan file root must be a JSON object", hint=str(path)))

    schema = get_int(data, "schema")
    if schema != PLAN_SCHEMA:
        return Err(ConfigError(message=f"unsupported plan schema: {schema}", hint=str(path)))

    mode = get_str(data, "mode")
    if mode not in RELEASE_MODES:
        return Err(ConfigError(message=f"invalid mode in plan: {mode!r}", hint=str(path)))

    policy = get_str(data, "conflict_policy")
    if policy not in CONFLICT_POLICIES:
        return Err(
            ConfigError(message=f"invalid conflict_policy in plan: {policy!r}", hint=str(path))
        )

    repo = get_str(data, "repo")
    if repo is None:
        return Err(ConfigError(message="missing repo in plan", hint=str(path)))

    raw_entries = get_list(data, "entries")
    if raw_entries is None:
        return Err(ConfigError(message="missing entries[] in plan", hint=str(path)))

    entries: list[ReleasePlanEntry] = []
    seen: set[str] = set()
    for index, item in enumerate(raw_entries):
        entry = _read_entry(item, index, path)
        if isinstance(entry, Err):
            return entry
        if entry.value.key in seen:
            return Err(
                ConfigError(
                    message=f"duplicate entry key in plan: {entry.value.key}", hint=str(path)
                )
            )
        seen.add(entry.value.key)
        entries.append(entry.value)

    if not entries:
        return Err(ConfigError(message="plan has no entries", hint=str(path)))

    return Ok(
        ReleasePlan(
            mode=mode,
            conflict_policy=policy,
            repo=repo,
            entries=tuple(entries),
            excluded=get_str_list(data, "excluded"),
        )
    )
