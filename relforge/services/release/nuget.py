from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from zipfile import ZIP_DEFLATED, ZipFile

from relforge.core.result import Err, Ok, Result
from relforge.platform.process import ProcessError
from relforge.platform.process import run as run_process
from relforge.services.release.errors import PublishError
from relforge.services.release.executor import (
    SinkAlreadyExists,
    SinkDone,
    SinkFailure,
    SinkOutcome,
)
from relforge.services.release.model import ReleasePlanEntry
from relforge.services.release.timeouts import (
    DOTNET_PACK_TIMEOUT_SECONDS,
    NUGET_PUSH_TIMEOUT_SECONDS,
)

_DUPLICATE_MARKERS = (
    "already exists",
    "already contains",
    "409 (conflict",
)


def _is_duplicate(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _DUPLICATE_MARKERS)


@dataclass(frozen=True, slots=True)
class DotnetPacker:
    """Runs ``dotnet pack`` for each project of an entry, then zips its build output."""

    root: Path
    configuration: str
    output_dir: Path
    # project name -> .csproj path
    sources: Mapping[str, str]

    def _project_file(self, csproj: str) -> Path:
        path = Path(csproj)
        return path if path.is_absolute() else self.root / path

    def pack(self, entry: ReleasePlanEntry) -> Result[ReleasePlanEntry, PublishError]:
        versions = entry.versions_by_project()
        for name in entry.projects:
            csproj = self.sources.get(name)
            if csproj is None:
                return Err(PublishError(kind="pack", message=f"no project file for {name}"))

            cmd = [
                "dotnet",
                "pack",
                csproj,
                "--configuration",
                self.configuration,
                "--output",
                str(self.output_dir),
                "--nologo",
            ]
            version = versions.get(name)
            if version:
                cmd.append(f"-p:Version={version}")
            result = run_process(cmd, cwd=self.root, timeout=DOTNET_PACK_TIMEOUT_SECONDS)
            if isinstance(result, Err):
                return Err(
                    PublishError(
                        kind="pack",
                        message=f"dotnet pack failed for {name}",
                        hint=_last_lines(result.error),
                    )
                )

        missing = [p for p in entry.packages if not Path(p).is_file()]
        if missing:
            return Err(
                PublishError(
                    kind="pack",
                    message=f"expected package not produced: {', '.join(missing)}",
                    hint="check <Version> and <PackageId> in the project file",
                )
            )

        for name in entry.projects:
            zipped = self._zip_release(entry, name)
            if isinstance(zipped, Err):
                return zipped

        return Ok(entry)

    def _zip_release(self, entry: ReleasePlanEntry, name: str) -> Result[None, PublishError]:
        target = _release_zip_for(entry.release_assets, name)
        csproj = self.sources.get(name)
        if target is None or csproj is None:
            return Ok(None)

        release_dir = self._project_file(csproj).parent / "bin" / self.configuration
        if not release_dir.is_dir():
            return Err(
                PublishError(
                    kind="pack",
                    message=f"release output not found for {name}: {release_dir}",
                    hint=f"build the project in {self.configuration} configuration",
                )
            )

        zip_path = Path(target)
        files = _collect_release_files(release_dir, skip=zip_path)
        try:
            zip_path.parent.mkdir(parents=True, exist_ok=True)
            with ZipFile(zip_path, "w", compression=ZIP_DEFLATED, strict_timestamps=False) as zf:
                for src, arc in files:
                    zf.write(src, arcname=arc)
        except OSError as e:
            return Err(
                PublishError(kind="pack", message=f"failed to write {zip_path.name}: {e}")
            )
        return Ok(None)


_ZIP_EXCLUDED_SUFFIXES = (".nupkg", ".snupkg")


def _release_zip_for(assets: tuple[str, ...], name: str) -> str | None:
    """Find ``{name}.{version}.zip`` among the entry's release assets."""
    prefix = f"{name.lower()}."
    for asset in assets:
        filename = Path(asset).name.lower()
        if not filename.startswith(prefix) or not filename.endswith(".zip"):
            continue
        # Forge.Web.1.0.0.zip must not match project Forge.
        if filename[len(prefix) : len(prefix) + 1].isdigit():
            return asset
    return None


def _collect_release_files(release_dir: Path, *, skip: Path) -> list[tuple[Path, str]]:
    skipped = skip.resolve()
    out: list[tuple[Path, str]] = []
    for path in sorted(release_dir.rglob("*")):
        if path.is_dir():
            continue
        if path.suffix.lower() in _ZIP_EXCLUDED_SUFFIXES:
            continue
        if path.resolve() == skipped:
            continue
        out.append((path, path.relative_to(release_dir).as_posix()))
    return out


def _last_lines(error: ProcessError, count: int = 5) -> str | None:
    lines = [line for line in error.output.splitlines() if line.strip()]
    return "\n".join(lines[-count:]) or None


@dataclass(frozen=True, slots=True)
class NuGetSink:
    """Pushes an entry's packages with ``dotnet nuget push``."""

    root: Path
    source: str
    api_key: str
    skip_duplicate: bool = False

    def _push(self, package: str) -> Result[str, ProcessError]:
        cmd = [
            "dotnet",
            "nuget",
            "push",
            package,
            "--api-key",
            self.api_key,
            "--source",
            self.source,
        ]
        if self.skip_duplicate:
            cmd.append("--skip-duplicate")
        return run_process(
            cmd,
            cwd=self.root,
            timeout=NUGET_PUSH_TIMEOUT_SECONDS,
            secrets=(self.api_key,),
        )

    def publish(self, entry: ReleasePlanEntry, *, reuse: bool) -> SinkOutcome:
        del reuse
        duplicates: list[str] = []
        for package in entry.packages:
            result = self._push(package)
            if isinstance(result, Err):
                if _is_duplicate(result.error.output):
                    duplicates.append(Path(package).name)
                    if not self.skip_duplicate:
                        break
                    continue
                return SinkFailure(
                    PublishError(
                        kind="nuget",
                        message=f"push failed: {Path(package).name}",
                        hint=_last_lines(result.error),
                    )
                )
            # --skip-duplicate exits 0 and only reports the conflict.
            if self.skip_duplicate and _is_duplicate(result.value):
                duplicates.append(Path(package).name)

        if duplicates and (not self.skip_duplicate or len(duplicates) == len(entry.packages)):
            return SinkAlreadyExists(detail=", ".join(duplicates))
        return SinkDone(urls=self.package_urls(entry))

    def package_urls(self, entry: ReleasePlanEntry) -> tuple[str, ...]:
        if "nuget.org" not in self.source.lower():
            return ()
        urls: list[str] = []
        for package in entry.packages:
            stem = Path(package).name.removesuffix(".nupkg")
            package_id, version = _split_package_stem(stem)
            if version:
                urls.append(f"https://www.nuget.org/packages/{package_id}/{version}")
        return tuple(urls)


def _split_package_stem(stem: str) -> tuple[str, str]:
    """Split ``Foo.Bar.1.2.3`` into (``Foo.Bar``, ``1.2.3``)."""
    parts = stem.split(".")
    for i, part in enumerate(parts):
        if part.isdigit():
            return ".".join(parts[:i]), ".".join(parts[i:])
    return stem, ""

