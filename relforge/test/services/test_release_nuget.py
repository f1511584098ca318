from __future__ import annotations

from pathlib import Path
from zipfile import ZipFile

import pytest

from relforge.core.result import Err, Ok, Result
from relforge.platform.process import ProcessError
from relforge.services.release import nuget as nuget_mod
from relforge.services.release.executor import SinkAlreadyExists, SinkDone, SinkFailure
from relforge.services.release.model import ReleasePlanEntry


def _entry(packages: tuple[str, ...], projects: tuple[str, ...] = ("Core",)) -> ReleasePlanEntry:
    return ReleasePlanEntry(
        key="forge",
        projects=projects,
        version="1.0.0",
        tag="v1.0.0",
        release_name="v1.0.0",
        packages=packages,
        release_assets=packages,
        publish_nuget=True,
        publish_github=False,
    )


def _fail(stderr: str, stdout: str = "") -> Err[ProcessError]:
    return Err(ProcessError(command=("dotnet",), returncode=1, stdout=stdout, stderr=stderr))


class FakeRun:
    def __init__(self, responses: list[Result[str, ProcessError]]) -> None:
        self.responses = responses
        self.calls: list[list[str]] = []
        self.secrets: list[tuple[str, ...]] = []

    def __call__(
        self,
        cmd: list[str],
        *,
        cwd: Path,
        timeout: float | None = None,
        secrets: tuple[str, ...] = (),
    ) -> Result[str, ProcessError]:
        del cwd
        del timeout
        self.calls.append(cmd)
        self.secrets.append(secrets)
        return self.responses.pop(0)


def test_push_masks_api_key_and_builds_urls(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    fake = FakeRun([Ok("Your package was pushed.")])
    monkeypatch.setattr(nuget_mod, "run_process", fake)
    sink = nuget_mod.NuGetSink(
        root=tmp_path, source="https://api.nuget.org/v3/index.json", api_key="secret"
    )

    outcome = sink.publish(_entry(("out/Acme.Core.1.2.0.nupkg",)), reuse=False)

    assert outcome == SinkDone(urls=("https://www.nuget.org/packages/Acme.Core/1.2.0",))
    assert fake.calls[0][:4] == ["dotnet", "nuget", "push", "out/Acme.Core.1.2.0.nupkg"]
    assert fake.secrets[0] == ("secret",)
    assert "--skip-duplicate" not in fake.calls[0]


def test_private_feed_has_no_urls(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(nuget_mod, "run_process", FakeRun([Ok("")]))
    sink = nuget_mod.NuGetSink(root=tmp_path, source="https://feed.example/v3", api_key="k")
    assert sink.publish(_entry(("out/Core.1.0.0.nupkg",)), reuse=False) == SinkDone()


def test_duplicate_without_skip_stops(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    fake = FakeRun([_fail("Response status code 409 (Conflict)")])
    monkeypatch.setattr(nuget_mod, "run_process", fake)
    sink = nuget_mod.NuGetSink(root=tmp_path, source="https://feed.example/v3", api_key="k")

    outcome = sink.publish(_entry(("out/A.1.0.0.nupkg", "out/B.1.0.0.nupkg")), reuse=False)

    assert outcome == SinkAlreadyExists(detail="A.1.0.0.nupkg")
    assert len(fake.calls) == 1


def test_skip_duplicate_all_existing(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    fake = FakeRun([Ok("Package 'A.1.0.0' already exists at feed")])
    monkeypatch.setattr(nuget_mod, "run_process", fake)
    sink = nuget_mod.NuGetSink(
        root=tmp_path, source="https://feed.example/v3", api_key="k", skip_duplicate=True
    )

    outcome = sink.publish(_entry(("out/A.1.0.0.nupkg",)), reuse=False)

    assert isinstance(outcome, SinkAlreadyExists)
    assert "--skip-duplicate" in fake.calls[0]


def test_skip_duplicate_partial_is_done(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    fake = FakeRun([Ok("Package 'A.1.0.0' already exists at feed"), Ok("pushed")])
    monkeypatch.setattr(nuget_mod, "run_process", fake)
    sink = nuget_mod.NuGetSink(
        root=tmp_path, source="https://feed.example/v3", api_key="k", skip_duplicate=True
    )

    outcome = sink.publish(_entry(("out/A.1.0.0.nupkg", "out/B.1.0.0.nupkg")), reuse=False)

    assert outcome == SinkDone()
    assert len(fake.calls) == 2


def test_push_failure(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(nuget_mod, "run_process", FakeRun([_fail("401 (Unauthorized)")]))
    sink = nuget_mod.NuGetSink(root=tmp_path, source="https://feed.example/v3", api_key="k")

    outcome = sink.publish(_entry(("out/A.1.0.0.nupkg",)), reuse=False)

    assert isinstance(outcome, SinkFailure)
    assert outcome.error.message == "push failed: A.1.0.0.nupkg"
    assert outcome.error.hint == "401 (Unauthorized)"


def test_pack_checks_produced_packages(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    out = tmp_path / "out"
    package = out / "Core.1.0.0.nupkg"

    def fake_run(
        cmd: list[str], *, cwd: Path, timeout: float | None = None
    ) -> Result[str, ProcessError]:
        del cwd
        del timeout
        assert cmd[:3] == ["dotnet", "pack", "src/Core/Core.csproj"]
        assert cmd[cmd.index("--output") + 1] == str(out)
        out.mkdir(parents=True, exist_ok=True)
        package.write_bytes(b"PK")
        return Ok("")

    monkeypatch.setattr(nuget_mod, "run_process", fake_run)
    packer = nuget_mod.DotnetPacker(
        root=tmp_path,
        configuration="Release",
        output_dir=out,
        sources={"Core": "src/Core/Core.csproj"},
    )

    entry = _entry((str(package),))
    assert packer.pack(entry) == Ok(entry)


def test_pack_reports_missing_package(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(nuget_mod, "run_process", lambda cmd, **_: Ok(""))
    packer = nuget_mod.DotnetPacker(
        root=tmp_path, configuration="Release", output_dir=tmp_path, sources={"Core": "Core.csproj"}
    )
    result = packer.pack(_entry((str(tmp_path / "Core.1.0.0.nupkg"),)))
    assert isinstance(result, Err)
    assert "expected package not produced" in result.error.message


def test_pack_failure_and_unknown_project(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setattr(
        nuget_mod, "run_process", lambda cmd, **_: _fail("error CS1002: ; expected")
    )
    packer = nuget_mod.DotnetPacker(
        root=tmp_path, configuration="Release", output_dir=tmp_path, sources={"Core": "Core.csproj"}
    )

    failed = packer.pack(_entry(()))
    assert isinstance(failed, Err)
    assert failed.error.message == "dotnet pack failed for Core"
    assert failed.error.hint == "error CS1002: ; expected"

    unknown = packer.pack(_entry((), projects=("Web",)))
    assert isinstance(unknown, Err)
    assert unknown.error.message == "no project file for Web"


def _versioned_entry(tmp_path: Path) -> ReleasePlanEntry:
    release_dir = tmp_path / "src" / "Core" / "bin" / "Release"
    return ReleasePlanEntry(
        key="Core",
        projects=("Core",),
        version="2.0.0",
        tag="Core-v2.0.0",
        release_name="Core-v2.0.0",
        packages=(str(tmp_path / "out" / "Core.2.0.0.nupkg"),),
        release_assets=(str(release_dir / "Core.2.0.0.zip"),),
        publish_nuget=True,
        publish_github=True,
        project_versions=("2.0.0",),
    )


def test_pack_uses_resolved_version_and_zips_output(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    entry = _versioned_entry(tmp_path)
    release_dir = tmp_path / "src" / "Core" / "bin" / "Release"
    (release_dir / "net8.0").mkdir(parents=True)
    (release_dir / "net8.0" / "Core.dll").write_bytes(b"MZ")
    (release_dir / "Core.1.9.0.nupkg").write_bytes(b"PK")
    (release_dir / "Core.1.9.0.snupkg").write_bytes(b"PK")
    commands: list[list[str]] = []

    def fake_run(
        cmd: list[str], *, cwd: Path, timeout: float | None = None
    ) -> Result[str, ProcessError]:
        del cwd
        del timeout
        commands.append(cmd)
        package = Path(entry.packages[0])
        package.parent.mkdir(parents=True, exist_ok=True)
        package.write_bytes(b"PK")
        return Ok("")

    monkeypatch.setattr(nuget_mod, "run_process", fake_run)
    packer = nuget_mod.DotnetPacker(
        root=tmp_path,
        configuration="Release",
        output_dir=tmp_path / "out",
        sources={"Core": "src/Core/Core.csproj"},
    )

    assert packer.pack(entry) == Ok(entry)
    assert "-p:Version=2.0.0" in commands[0]
    assert Path(entry.packages[0]).name == f"Core.{entry.version}.nupkg"

    zip_path = Path(entry.release_assets[0])
    assert zip_path.name == f"Core.{entry.version}.zip"
    with ZipFile(zip_path) as zf:
        assert zf.namelist() == ["net8.0/Core.dll"]


def test_pack_without_release_output_fails(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    entry = _versioned_entry(tmp_path)

    def fake_run(cmd: list[str], **_: object) -> Result[str, ProcessError]:
        del cmd
        package = Path(entry.packages[0])
        package.parent.mkdir(parents=True, exist_ok=True)
        package.write_bytes(b"PK")
        return Ok("")

    monkeypatch.setattr(nuget_mod, "run_process", fake_run)
    packer = nuget_mod.DotnetPacker(
        root=tmp_path,
        configuration="Release",
        output_dir=tmp_path / "out",
        sources={"Core": "src/Core/Core.csproj"},
    )

    result = packer.pack(entry)
    assert isinstance(result, Err)
    assert result.error.kind == "pack"
    assert "release output not found for Core" in result.error.message


def test_release_zip_matches_exact_project_name() -> None:
    assets = ("zips/Forge.Web.1.0.0.zip", "zips/Forge.1.0.0.zip")
    assert nuget_mod._release_zip_for(assets, "Forge") == "zips/Forge.1.0.0.zip"
    assert nuget_mod._release_zip_for(assets, "Forge.Web") == "zips/Forge.Web.1.0.0.zip"
    assert nuget_mod._release_zip_for(assets, "Forge.Cli") is None
