"""Release configuration: JSON document -> frozen ``ReleaseConfig``.

Keys are matched case-insensitively. Paths are resolved against the directory
holding the config file. Secrets are never read here; ``resolve_credentials``
does that once, at the CLI edge, with an explicit environment mapping.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from relforge.core.result import Err, Ok, Result
from relforge.core.structured import (
    as_str_dict,
    fold_keys,
    get_bool,
    get_str,
    get_str_list,
    get_table,
)
from relforge.platform.files import read_secret_file
from relforge.services.release.discovery import DiscoveryFilters
from relforge.services.release.errors import ConfigError
from relforge.services.release.model import (
    CONFLICT_POLICIES,
    INCLUDE_MODES,
    MISMATCH_POLICIES,
    RELEASE_MODES,
    ExpectedVersionEntry,
    IncludeMode,
    ReleaseMode,
    TagConflictPolicy,
    VersionMismatchPolicy,
)
from relforge.services.release.planner import PlanSettings
from relforge.services.release.versions import parse_expected_entry

DEFAULT_NUGET_SOURCE = "https://api.nuget.org/v3/index.json"
DEFAULT_CONFIGURATION = "Release"


@dataclass(frozen=True, slots=True)
class SecretRef:
    """Where a secret may come from. Lookup order: file, env var, inline."""

    inline: str | None = None
    file_path: str | None = None
    env_name: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self.inline or self.file_path or self.env_name)


@dataclass(frozen=True, slots=True)
class Credentials:
    nuget_api_key: str | None = None
    github_token: str | None = None

    def secrets(self) -> tuple[str, ...]:
        return tuple(s for s in (self.nuget_api_key, self.github_token) if s)


def _empty_map() -> dict[str, ExpectedVersionEntry]:
    return {}


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    root_path: Path
    config_dir: Path
    include_projects: tuple[str, ...] = ()
    exclude_projects: tuple[str, ...] = ()
    exclude_directories: tuple[str, ...] = ()
    expected_version: ExpectedVersionEntry | None = None
    expected_version_map: dict[str, ExpectedVersionEntry] = field(default_factory=_empty_map)
    include_mode: IncludeMode = "All"
    use_wildcards: bool = False
    mismatch_policy: VersionMismatchPolicy = "Warn"
    configuration: str = DEFAULT_CONFIGURATION
    output_path: Path | None = None
    release_zip_output_path: Path | None = None
    plan_output_path: Path | None = None
    publish_nuget: bool = False
    publish_github: bool = False
    publish_source: str = DEFAULT_NUGET_SOURCE
    # Feeds queried for the last published version; empty means publish_source.
    version_sources: tuple[str, ...] = ()
    include_prerelease: bool = False
    api_key: SecretRef = SecretRef()
    skip_duplicate: bool = False
    fail_fast: bool = True
    github_username: str | None = None
    github_repository: str | None = None
    github_token: SecretRef = SecretRef()
    prerelease: bool = False
    generate_release_notes: bool = False
    release_mode: ReleaseMode = "Single"
    primary_project: str | None = None
    tag_template: str | None = None
    release_name: str | None = None
    include_project_name_in_tag: bool = True
    conflict_policy: TagConflictPolicy = "Reuse"

    @property
    def repo(self) -> str:
        return self.github_repository or self.root_path.name

    @property
    def repo_slug(self) -> str | None:
        if self.github_username and self.github_repository:
            return f"{self.github_username}/{self.github_repository}"
        return None

    @property
    def feed_sources(self) -> tuple[str, ...]:
        return self.version_sources or (self.publish_source,)

    @property
    def artefact_dir(self) -> Path:
        return self.output_path or self.root_path / "artefacts" / "packages"

    def to_plan_settings(self) -> PlanSettings:
        return PlanSettings(
            mode=self.release_mode,
            repo=self.repo,
            tag_template=self.tag_template,
            release_name_template=self.release_name,
            include_project_name_in_tag=self.include_project_name_in_tag,
            primary_project=self.primary_project,
            conflict_policy=self.conflict_policy,
            mismatch_policy=self.mismatch_policy,
            publish_nuget=self.publish_nuget,
            publish_github=self.publish_github,
        )

    def to_discovery_filters(self) -> DiscoveryFilters:
        return DiscoveryFilters(
            root=self.root_path,
            include_projects=self.include_projects,
            exclude_projects=self.exclude_projects,
            exclude_directories=self.exclude_directories,
            output_dir=self.artefact_dir,
            with_release_assets=self.publish_github,
            configuration=self.configuration,
            release_zip_dir=self.release_zip_output_path,
        )


def _choice[T: str](
    data: Mapping[str, object], key: str, allowed: tuple[T, ...], default: T
) -> Result[T, ConfigError]:
    raw = get_str(data, key.lower())
    if raw is None:
        return Ok(default)
    for value in allowed:
        if value.lower() == raw.lower():
            return Ok(value)
    return Err(
        ConfigError(
            message=f"invalid {key}: {raw!r}",
            hint=f"expected one of: {', '.join(allowed)}",
        )
    )


def _flag(data: Mapping[str, object], key: str, default: bool) -> bool:
    value = get_bool(data, key.lower())
    return default if value is None else value


def _resolve_path(base: Path, raw: str | None) -> Path | None:
    if raw is None:
        return None
    path = Path(raw).expanduser()
    return path if path.is_absolute() else (base / path).resolve()


def _sources(base: Path, raw: tuple[str, ...]) -> tuple[str, ...]:
    # URLs pass through; anything else is a local folder of .nupkg files.
    out: list[str] = []
    for source in raw:
        if "://" in source:
            out.append(source)
        else:
            resolved = _resolve_path(base, source)
            out.append(str(resolved) if resolved is not None else source)
    return tuple(out)


def _secret(data: Mapping[str, object], prefix: str) -> SecretRef:
    return SecretRef(
        inline=get_str(data, prefix.lower()),
        file_path=get_str(data, f"{prefix}FilePath".lower()),
        env_name=get_str(data, f"{prefix}EnvName".lower()),
    )


def _expected_map(
    data: Mapping[str, object],
) -> Result[dict[str, ExpectedVersionEntry], ConfigError]:
    table = get_table(data, "expectedversionmap")
    if table is None:
        if data.get("expectedversionmap") is not None:
            return Err(ConfigError(message="ExpectedVersionMap must be a JSON object"))
        return Ok({})

    out: dict[str, ExpectedVersionEntry] = {}
    for name, raw in sorted(table.items()):
        if not isinstance(raw, str):
            return Err(
                ConfigError(
                    message=f"ExpectedVersionMap[{name!r}] must be a string",
                    hint="for example \"1.2.3\", \"1.2.X\" or \"manifest\"",
                )
            )
        entry = parse_expected_entry(raw)
        if isinstance(entry, Err):
            return Err(ConfigError(message=f"{name}: {entry.error.message}", hint=entry.error.hint))
        out[name.strip()] = entry.value
    return Ok(out)


def parse_release_config(obj: object, *, config_dir: Path) -> Result[ReleaseConfig, ConfigError]:
    raw = as_str_dict(obj)
    if raw is None:
        return Err(ConfigError(message="release config root must be a JSON object"))
    data = fold_keys(raw)

    root_path = _resolve_path(config_dir, get_str(data, "rootpath")) or config_dir

    include_mode = _choice(data, "IncludeMode", INCLUDE_MODES, "All")
    if isinstance(include_mode, Err):
        return include_mode
    release_mode = _choice(data, "GitHubReleaseMode", RELEASE_MODES, "Single")
    if isinstance(release_mode, Err):
        return release_mode
    conflict_policy = _choice(data, "GitHubTagConflictPolicy", CONFLICT_POLICIES, "Reuse")
    if isinstance(conflict_policy, Err):
        return conflict_policy
    mismatch_policy = _choice(data, "VersionMismatchPolicy", MISMATCH_POLICIES, "Warn")
    if isinstance(mismatch_policy, Err):
        return mismatch_policy

    expected_version: ExpectedVersionEntry | None = None
    global_raw = get_str(data, "expectedversion")
    if global_raw is not None:
        parsed = parse_expected_entry(global_raw)
        if isinstance(parsed, Err):
            return parsed
        expected_version = parsed.value

    expected_map = _expected_map(data)
    if isinstance(expected_map, Err):
        return expected_map

    return Ok(
        ReleaseConfig(
            root_path=root_path,
            config_dir=config_dir,
            include_projects=get_str_list(data, "includeprojects"),
            exclude_projects=get_str_list(data, "excludeprojects"),
            exclude_directories=get_str_list(data, "excludedirectories"),
            expected_version=expected_version,
            expected_version_map=expected_map.value,
            include_mode=include_mode.value,
            use_wildcards=_flag(data, "ExpectedVersionMapUseWildcards", False),
            mismatch_policy=mismatch_policy.value,
            configuration=get_str(data, "configuration") or DEFAULT_CONFIGURATION,
            output_path=_resolve_path(config_dir, get_str(data, "outputpath")),
            release_zip_output_path=_resolve_path(
                config_dir, get_str(data, "releasezipoutputpath")
            ),
            plan_output_path=_resolve_path(config_dir, get_str(data, "planoutputpath")),
            publish_nuget=_flag(data, "PublishNuget", False),
            publish_github=_flag(data, "PublishGitHub", False),
            publish_source=get_str(data, "publishsource") or DEFAULT_NUGET_SOURCE,
            version_sources=_sources(config_dir, get_str_list(data, "versionsources")),
            include_prerelease=_flag(data, "IncludePrerelease", False),
            api_key=_secret(data, "PublishApiKey"),
            skip_duplicate=_flag(data, "SkipDuplicate", False),
            fail_fast=_flag(data, "PublishFailFast", True),
            github_username=get_str(data, "githubusername"),
            github_repository=get_str(data, "githubrepositoryname"),
            github_token=_secret(data, "GitHubAccessToken"),
            prerelease=_flag(data, "GitHubIsPreRelease", False),
            generate_release_notes=_flag(data, "GitHubGenerateReleaseNotes", False),
            release_mode=release_mode.value,
            primary_project=get_str(data, "githubprimaryproject"),
            tag_template=get_str(data, "githubtagtemplate"),
            release_name=get_str(data, "githubreleasename"),
            include_project_name_in_tag=_flag(data, "GitHubIncludeProjectNameInTag", True),
            conflict_policy=conflict_policy.value,
        )
    )


def load_release_config(path: Path) -> Result[ReleaseConfig, ConfigError]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        return Err(ConfigError(message=f"failed to read release config: {e}", hint=str(path)))

    try:
        obj: object = json.loads(text)
    except json.JSONDecodeError as e:
        return Err(ConfigError(message=f"invalid JSON in release config: {e}", hint=str(path)))

    return parse_release_config(obj, config_dir=path.resolve().parent)


def resolve_secret(
    ref: SecretRef, *, base_dir: Path, environ: Mapping[str, str]
) -> str | None:
    if ref.file_path:
        path = _resolve_path(base_dir, ref.file_path)
        if path is not None:
            value = read_secret_file(path)
            if value:
                return value
    if ref.env_name:
        value = environ.get(ref.env_name, "").strip()
        if value:
            return value
    return ref.inline


def resolve_credentials(config: ReleaseConfig, environ: Mapping[str, str]) -> Credentials:
    return Credentials(
        nuget_api_key=resolve_secret(config.api_key, base_dir=config.config_dir, environ=environ),
        github_token=resolve_secret(
            config.github_token, base_dir=config.config_dir, environ=environ
        ),
    )


def preflight(config: ReleaseConfig, credentials: Credentials) -> Result[None, ConfigError]:
    """Fail before any remote call when publishing cannot possibly succeed."""
    if not config.root_path.is_dir():
        return Err(
            ConfigError(message=f"root path does not exist: {config.root_path}", hint="RootPath")
        )

    if config.publish_nuget and not credentials.nuget_api_key:
        return Err(
            ConfigError(
                message="NuGet publishing requires an API key",
                hint="set PublishApiKeyFilePath, PublishApiKeyEnvName or PublishApiKey",
            )
        )

    return github_preflight(config, credentials)


def github_preflight(config: ReleaseConfig, credentials: Credentials) -> Result[None, ConfigError]:
    if not config.publish_github:
        return Ok(None)
    missing: list[str] = []
    if not credentials.github_token:
        missing.append("access token")
    if not config.github_username:
        missing.append("GitHubUsername")
    if not config.github_repository:
        missing.append("GitHubRepositoryName")
    if missing:
        return Err(
            ConfigError(
                message=f"GitHub publishing requires: {', '.join(missing)}",
                hint="set GitHubAccessTokenFilePath, GitHubAccessTokenEnvName "
                "or GitHubAccessToken",
            )
        )
    return Ok(None)
