"""Find .csproj projects under a repository root.

Discovery is local and read-only: it never runs dotnet and never contacts a
package feed. Package paths are where ``dotnet pack`` is expected to put
them and release assets are the zips the packer builds from each project's build output.
"""

from __future__ import annotations

import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path

from relforge.core.result import Err, Ok, Result
from relforge.services.release.errors import DiscoveryError
from relforge.services.release.model import ProjectRecord
from relforge.services.release.semver import SemVer, parse_version

DEFAULT_EXCLUDE_DIRECTORIES: tuple[str, ...] = (
    ".git",
    ".vs",
    "bin",
    "obj",
    "packages",
    "node_modules",
    ".vscode",
    "Artefacts",
    "Ignore",
)


@dataclass(frozen=True, slots=True)
class DiscoveryFilters:
    root: Path
    include_projects: tuple[str, ...] = ()
    exclude_projects: tuple[str, ...] = ()
    exclude_directories: tuple[str, ...] = ()
    output_dir: Path | None = None
    with_release_assets: bool = False
    configuration: str = "Release"
    # Where release zips go; defaults to bin/{configuration} beside each project.
    release_zip_dir: Path | None = None

    def skipped_dirs(self) -> frozenset[str]:
        names = (*DEFAULT_EXCLUDE_DIRECTORIES, *self.exclude_directories)
        return frozenset(d.lower() for d in names)


@dataclass(frozen=True, slots=True)
class CsprojInfo:
    version: str | None
    package_id: str | None
    packable: bool
    references: tuple[str, ...]


def _local(tag: str) -> str:
    # MSBuild files may carry an xmlns; compare on the local name only.
    return tag.rsplit("}", 1)[-1].lower()


def read_csproj(path: Path) -> Result[CsprojInfo, DiscoveryError]:
    try:
        tree = ET.parse(path)
    except (OSError, ET.ParseError) as e:
        return Err(DiscoveryError(message=f"cannot read project file: {e}", hint=str(path)))

    version: str | None = None
    prefix: str | None = None
    package_id: str | None = None
    packable = True
    references: list[str] = []

    for el in tree.getroot().iter():
        name = _local(el.tag)
        text = (el.text or "").strip()
        if name == "version" and text and version is None:
            version = text
        elif name == "versionprefix" and text and prefix is None:
            prefix = text
        elif name == "packageid" and text and package_id is None:
            package_id = text
        elif name == "ispackable" and text.lower() == "false":
            packable = False
        elif name == "projectreference":
            include = el.get("Include") or el.get("include")
            if include:
                ref = include.replace("\\", "/").rsplit("/", 1)[-1]
                references.append(ref.removesuffix(".csproj"))

    return Ok(
        CsprojInfo(
            version=version or prefix,
            package_id=package_id,
            packable=packable,
            references=tuple(references),
        )
    )


def find_project_files(root: Path, skipped: frozenset[str]) -> list[Path]:
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d.lower() not in skipped)
        for filename in sorted(filenames):
            if filename.lower().endswith(".csproj"):
                found.append(Path(dirpath) / filename)
    return found


def _name_set(names: tuple[str, ...]) -> set[str]:
    return {n.strip().lower() for n in names if n.strip()}


def discover_projects(filters: DiscoveryFilters) -> Result[list[ProjectRecord], DiscoveryError]:
    """Return selected projects sorted by name.

    A project name found at more than one path is an error: release entries
    are keyed by name.
    """
    root = filters.root
    if not root.is_dir():
        return Err(DiscoveryError(message=f"root path not found: {root}", hint="RootPath"))

    include = _name_set(filters.include_projects)
    exclude = _name_set(filters.exclude_projects)

    candidates: dict[str, list[Path]] = {}
    for path in find_project_files(root, filters.skipped_dirs()):
        name = path.stem
        if include and name.lower() not in include:
            continue
        if name.lower() in exclude:
            continue
        candidates.setdefault(name.lower(), []).append(path)

    if not candidates:
        return Err(
            DiscoveryError(
                message=f"no .csproj projects found under {root}",
                hint="check RootPath, IncludeProjects and ExcludeDirectories",
            )
        )

    out_dir = filters.output_dir or root / "artefacts" / "packages"
    projects: list[ProjectRecord] = []
    for paths in candidates.values():
        if len(paths) > 1:
            listed = "; ".join(str(p) for p in paths)
            return Err(
                DiscoveryError(
                    message=f"duplicate project name {paths[0].stem} in: {listed}",
                    hint="exclude directories or rename projects",
                )
            )

        path = paths[0]
        info = read_csproj(path)
        if isinstance(info, Err):
            return info

        raw_version = info.value.version
        version = parse_version(raw_version) if raw_version else None
        if version is None and not info.value.packable:
            # Test and tool projects often carry no version; they are never released.
            version = SemVer(0, 0, 0)
        if version is None:
            return Err(
                DiscoveryError(
                    message=f"{path.stem}: missing or invalid <Version> ({raw_version!r})",
                    hint=str(path),
                )
            )

        package_id = info.value.package_id or path.stem
        package = str(out_dir / f"{package_id}.{version.nuget_text()}.nupkg")
        zip_dir = filters.release_zip_dir or path.parent / "bin" / filters.configuration
        release_zip = str(zip_dir / f"{path.stem}.{version.nuget_text()}.zip")
        projects.append(
            ProjectRecord(
                name=path.stem,
                version=version,
                packages=(package,) if info.value.packable else (),
                release_assets=(
                    (release_zip,) if info.value.packable and filters.with_release_assets else ()
                ),
                identifier=info.value.package_id,
                dependencies=info.value.references,
                packable=info.value.packable,
                source_path=str(path),
            )
        )

    projects.sort(key=lambda p: p.name.lower())
    return Ok(projects)
