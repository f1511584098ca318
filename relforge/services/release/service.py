from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass

from relforge.core.result import Err, Ok, Result
from relforge.output.console import ConsoleProtocol, Style
from relforge.platform.http import HttpClient, RealHttpClient
from relforge.services.release.discovery import discover_projects
from relforge.services.release.errors import PublishError, ReleaseFailure
from relforge.services.release.feeds import NuGetFeedLookup, fill_last_published
from relforge.services.release.executor import (
    ExecutorSettings,
    Packer,
    ReleaseSink,
    TagStore,
    execute_plan,
)
from relforge.services.release.gh import (
    GitHubReleaseSink,
    GitHubTagStore,
    ensure_gh_available,
    gh_env,
)
from relforge.services.release.model import ProjectRecord, ReleasePlan
from relforge.services.release.nuget import DotnetPacker, NuGetSink
from relforge.services.release.planner import plan_release
from relforge.services.release.report import RunReport
from relforge.services.release.settings import Credentials, ReleaseConfig
from relforge.services.release.tags import ReleaseClock
from relforge.services.release.versions import needs_published_version, resolve_versions


@dataclass(frozen=True, slots=True)
class PlannedRelease:
    projects: tuple[ProjectRecord, ...]
    plan: ReleasePlan


def discover(
    config: ReleaseConfig, *, console: ConsoleProtocol
) -> Result[list[ProjectRecord], ReleaseFailure]:
    if config.include_projects:
        console.print(f"include: {', '.join(config.include_projects)}", Style.DIM)
    if config.exclude_projects:
        console.print(f"exclude: {', '.join(config.exclude_projects)}", Style.DIM)

    found = discover_projects(config.to_discovery_filters())
    if isinstance(found, Err):
        return found
    console.debug(f"discovered {len(found.value)} project(s) under {config.root_path}")
    return found


def feed_lookup(config: ReleaseConfig, client: HttpClient | None = None) -> NuGetFeedLookup:
    return NuGetFeedLookup(
        config.feed_sources,
        client or RealHttpClient(),
        include_prerelease=config.include_prerelease,
    )


def build_plan(
    config: ReleaseConfig,
    *,
    clock: ReleaseClock,
    console: ConsoleProtocol,
    lookup: NuGetFeedLookup | None = None,
) -> Result[PlannedRelease, ReleaseFailure]:
    """Discovery, version resolution and planning.

    Package feeds are queried only when ``lookup`` is given and a selected
    project's rule compares against its last published version. Without a
    lookup those rules run with no baseline and a warning says so.
    """
    found = discover(config, console=console)
    if isinstance(found, Err):
        return found
    projects = found.value

    baseline = needs_published_version(
        projects,
        config.expected_version_map,
        config.include_mode,
        global_expected=config.expected_version,
        use_wildcards=config.use_wildcards,
    )
    if baseline:
        names = tuple(p.name for p in baseline)
        if lookup is None:
            console.warning(f"last published version not looked up for: {', '.join(names)}")
        else:
            filled = fill_last_published(projects, lookup, names=names, console=console)
            if isinstance(filled, Err):
                return filled
            projects = filled.value

    resolution = resolve_versions(
        projects,
        config.expected_version_map,
        config.include_mode,
        global_expected=config.expected_version,
        use_wildcards=config.use_wildcards,
    )
    if isinstance(resolution, Err):
        return resolution

    for key in resolution.value.unmatched_entries:
        console.warning(f"expected version map entry matched no project: {key}")
    for mismatch in resolution.value.mismatches:
        console.warning(mismatch.pretty())

    plan = plan_release(projects, resolution.value, config.to_plan_settings(), clock)
    if isinstance(plan, Err):
        return plan
    return Ok(PlannedRelease(projects=tuple(projects), plan=plan.value))


class NoRemoteTags:
    """Tag store for runs that do not publish to GitHub."""

    def tag_exists(self, tag: str) -> Result[bool, PublishError]:
        del tag
        return Ok(False)


@dataclass(frozen=True, slots=True)
class Collaborators:
    tag_store: TagStore
    packer: Packer
    nuget: ReleaseSink | None
    github: ReleaseSink | None


def _github_remote(
    config: ReleaseConfig, credentials: Credentials, *, environ: Mapping[str, str]
) -> Result[tuple[str, dict[str, str]] | None, PublishError]:
    if not config.publish_github:
        return Ok(None)
    slug = config.repo_slug
    if not credentials.github_token or not slug:
        return Err(
            PublishError(
                kind="github",
                message="GitHub publishing requires an access token, "
                "GitHubUsername and GitHubRepositoryName",
                hint="set GitHubAccessTokenFilePath, GitHubAccessTokenEnvName "
                "or GitHubAccessToken",
            )
        )
    ok = ensure_gh_available()
    if isinstance(ok, Err):
        return ok
    return Ok((slug, gh_env(credentials.github_token, environ)))


def build_tag_store(
    config: ReleaseConfig, credentials: Credentials, *, environ: Mapping[str, str]
) -> Result[TagStore, PublishError]:
    """Tag store for conflict previews; needs no NuGet credentials."""
    remote = _github_remote(config, credentials, environ=environ)
    if isinstance(remote, Err):
        return remote
    if remote.value is None:
        return Ok(NoRemoteTags())
    slug, env = remote.value
    return Ok(GitHubTagStore(root=config.root_path, repo=slug, env=env))


def build_collaborators(
    config: ReleaseConfig,
    credentials: Credentials,
    projects: tuple[ProjectRecord, ...],
    *,
    environ: Mapping[str, str],
) -> Result[Collaborators, PublishError]:
    root = config.root_path
    packer = DotnetPacker(
        root=root,
        configuration=config.configuration,
        output_dir=config.artefact_dir,
        sources={p.name: p.source_path for p in projects if p.source_path},
    )

    nuget: ReleaseSink | None = None
    if config.publish_nuget:
        if not credentials.nuget_api_key:
            return Err(
                PublishError(
                    kind="nuget",
                    message="NuGet publishing requires an API key",
                    hint="set PublishApiKeyFilePath, PublishApiKeyEnvName or PublishApiKey",
                )
            )
        nuget = NuGetSink(
            root=root,
            source=config.publish_source,
            api_key=credentials.nuget_api_key,
            skip_duplicate=config.skip_duplicate,
        )

    remote = _github_remote(config, credentials, environ=environ)
    if isinstance(remote, Err):
        return remote
    tag_store: TagStore = NoRemoteTags()
    github: ReleaseSink | None = None
    if remote.value is not None:
        slug, env = remote.value
        tag_store = GitHubTagStore(root=root, repo=slug, env=env)
        github = GitHubReleaseSink(
            root=root,
            repo=slug,
            env=env,
            prerelease=config.prerelease,
            generate_notes=config.generate_release_notes,
        )

    return Ok(Collaborators(tag_store=tag_store, packer=packer, nuget=nuget, github=github))


def publish_plan(
    plan: ReleasePlan,
    collaborators: Collaborators,
    *,
    config: ReleaseConfig,
    continue_on_failure: bool,
    clock: ReleaseClock,
    console: ConsoleProtocol,
    cancel: threading.Event | None = None,
) -> RunReport:
    settings = ExecutorSettings(
        continue_on_failure=continue_on_failure or not config.fail_fast,
        skip_duplicate=config.skip_duplicate,
    )
    return execute_plan(
        plan,
        tag_store=collaborators.tag_store,
        nuget=collaborators.nuget,
        github=collaborators.github,
        packer=collaborators.packer,
        settings=settings,
        clock=clock,
        console=console,
        cancel=cancel,
    )
