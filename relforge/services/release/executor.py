"""Publish loop: drives a release plan through pack, NuGet and GitHub.

Entries run strictly in plan order, one at a time. Every remote concern is a
collaborator passed in by the caller (``TagStore``, ``ReleaseSink``,
``Packer``), so the loop itself never shells out.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Literal, Protocol

from relforge.core.result import Err, Ok, Result
from relforge.output.console import ConsoleProtocol
from relforge.services.release.errors import PublishError, TagConflictError
from relforge.services.release.model import ReleasePlan, ReleasePlanEntry, TagConflictPolicy
from relforge.services.release.report import (
    EntryState,
    Failed,
    Outcome,
    Published,
    Reused,
    RunReport,
    describe_outcome,
)
from relforge.services.release.tags import (
    CreateTag,
    ReleaseClock,
    ReuseTag,
    append_utc_timestamp,
    resolve_conflict,
)


@dataclass(frozen=True, slots=True)
class SinkDone:
    urls: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SinkAlreadyExists:
    detail: str


@dataclass(frozen=True, slots=True)
class SinkFailure:
    error: PublishError


SinkOutcome = SinkDone | SinkAlreadyExists | SinkFailure


class TagStore(Protocol):
    def tag_exists(self, tag: str) -> Result[bool, PublishError]: ...


class ReleaseSink(Protocol):
    def publish(self, entry: ReleasePlanEntry, *, reuse: bool) -> SinkOutcome: ...


class Packer(Protocol):
    def pack(self, entry: ReleasePlanEntry) -> Result[ReleasePlanEntry, PublishError]: ...


@dataclass(frozen=True, slots=True)
class ExecutorSettings:
    continue_on_failure: bool = False
    skip_duplicate: bool = False


@dataclass(frozen=True, slots=True)
class _Prepared:
    entry: ReleasePlanEntry
    reuse: bool


def _prepare_tag(
    entry: ReleasePlanEntry,
    *,
    tag_store: TagStore,
    policy: TagConflictPolicy,
    clock: ReleaseClock,
) -> Result[_Prepared, PublishError | TagConflictError]:
    exists = tag_store.tag_exists(entry.tag)
    if isinstance(exists, Err):
        return exists

    resolved = resolve_conflict(
        entry.tag,
        exists=exists.value,
        policy=policy,
        utc_timestamp=clock.utc_timestamp,
    )
    if isinstance(resolved, Err):
        return resolved

    match resolved.value:
        case CreateTag(tag=tag):
            prepared = entry if tag == entry.tag else entry.with_tag(tag)
            return Ok(_Prepared(entry=prepared, reuse=False))
        case ReuseTag():
            return Ok(_Prepared(entry=entry, reuse=True))


def _publish_nuget(
    entry: ReleasePlanEntry,
    nuget: ReleaseSink,
    *,
    skip_duplicate: bool,
) -> Result[tuple[bool, tuple[str, ...]], PublishError]:
    """Push packages. Ok carries (duplicate_skipped, urls)."""
    match nuget.publish(entry, reuse=False):
        case SinkDone(urls=urls):
            return Ok((False, urls))
        case SinkAlreadyExists(detail=detail):
            if skip_duplicate:
                return Ok((True, ()))
            return Err(
                PublishError(
                    kind="nuget",
                    message=f"package already exists: {detail}",
                    hint="enable SkipDuplicate to treat existing packages as reused",
                )
            )
        case SinkFailure(error=error):
            return Err(error)


def _publish_github(
    entry: ReleasePlanEntry,
    github: ReleaseSink,
    *,
    reuse: bool,
    policy: TagConflictPolicy,
    clock: ReleaseClock,
    console: ConsoleProtocol,
) -> tuple[ReleasePlanEntry, Outcome]:
    outcome = github.publish(entry, reuse=reuse)

    # A conflict seen only at publish time (a tag created since the probe)
    # gets exactly one retry under the conflict policy.
    if isinstance(outcome, SinkAlreadyExists):
        console.warning(f"{entry.tag}: release already exists ({outcome.detail})")
        match policy:
            case "Fail":
                return entry, Failed(
                    TagConflictError(tag=entry.tag, message=f"tag already exists: {entry.tag}")
                )
            case "Reuse":
                reuse = True
            case "AppendUtcTimestamp":
                entry = entry.with_tag(append_utc_timestamp(entry.tag, clock.utc_timestamp))
                reuse = False
                console.info(f"retrying as {entry.tag}")
        outcome = github.publish(entry, reuse=reuse)

    match outcome:
        case SinkDone(urls=urls):
            return entry, (Reused(entry.tag, urls) if reuse else Published(entry.tag, urls))
        case SinkAlreadyExists(detail=detail):
            return entry, Failed(
                TagConflictError(
                    tag=entry.tag,
                    message=f"tag still conflicts after applying {policy}: {entry.tag} ({detail})",
                )
            )
        case SinkFailure(error=error):
            return entry, Failed(error)


def _missing_sink(
    entry: ReleasePlanEntry, *, nuget: ReleaseSink | None, github: ReleaseSink | None
) -> PublishError | None:
    if entry.publish_nuget and nuget is None:
        return PublishError(
            kind="nuget",
            message=f"{entry.key}: NuGet publishing requested but no NuGet sink is configured",
            hint="check the NuGet API key",
        )
    if entry.publish_github and github is None:
        return PublishError(
            kind="github",
            message=f"{entry.key}: GitHub publishing requested but no GitHub sink is configured",
            hint="check the GitHub token, GitHubUsername and GitHubRepositoryName",
        )
    return None


def _run_entry(
    planned: ReleasePlanEntry,
    *,
    tag_store: TagStore,
    nuget: ReleaseSink | None,
    github: ReleaseSink | None,
    packer: Packer,
    settings: ExecutorSettings,
    policy: TagConflictPolicy,
    clock: ReleaseClock,
    console: ConsoleProtocol,
    states: list[EntryState],
) -> tuple[ReleasePlanEntry, Outcome]:
    entry = planned
    reuse = False

    unwired = _missing_sink(planned, nuget=nuget, github=github)
    if unwired is not None:
        return planned, Failed(unwired)

    # Conflicts are settled before anything is pushed.
    if planned.publish_github:
        prepared = _prepare_tag(planned, tag_store=tag_store, policy=policy, clock=clock)
        if isinstance(prepared, Err):
            return planned, Failed(prepared.error)
        entry = prepared.value.entry
        reuse = prepared.value.reuse
        if entry.tag != planned.tag:
            console.info(f"tag {planned.tag} exists; using {entry.tag}")
        elif reuse:
            console.info(f"tag {entry.tag} exists; reusing release")

    states.append(EntryState.PACKING)
    console.debug(f"packing {', '.join(entry.projects)}")
    packed = packer.pack(entry)
    if isinstance(packed, Err):
        return entry, Failed(packed.error)
    entry = packed.value

    urls: tuple[str, ...] = ()
    duplicate = False
    if entry.publish_nuget and nuget is not None:
        states.append(EntryState.PUBLISHING_NUGET)
        console.debug(f"pushing {len(entry.packages)} package(s)")
        pushed = _publish_nuget(entry, nuget, skip_duplicate=settings.skip_duplicate)
        if isinstance(pushed, Err):
            return entry, Failed(pushed.error)
        duplicate, urls = pushed.value
        if duplicate:
            console.warning("package already exists; skipped")

    if entry.publish_github and github is not None:
        states.append(EntryState.PUBLISHING_GITHUB)
        console.debug(f"publishing release {entry.tag}")
        entry, outcome = _publish_github(
            entry, github, reuse=reuse, policy=policy, clock=clock, console=console
        )
        match outcome:
            case Published(tag=tag, urls=gh_urls):
                return entry, Published(tag, (*urls, *gh_urls))
            case Reused(tag=tag, urls=gh_urls):
                return entry, Reused(tag, (*urls, *gh_urls))
            case _:
                return entry, outcome

    if duplicate:
        return entry, Reused(entry.tag, urls)
    return entry, Published(entry.tag, urls)


def execute_plan(
    plan: ReleasePlan,
    *,
    tag_store: TagStore,
    nuget: ReleaseSink | None,
    github: ReleaseSink | None,
    packer: Packer,
    settings: ExecutorSettings,
    clock: ReleaseClock,
    console: ConsoleProtocol,
    cancel: threading.Event | None = None,
) -> RunReport:
    """Publish every entry of ``plan`` and return the finalized report.

    The report always has one item per entry, in plan order. Fail-fast stops
    after the first failure; remaining entries are reported as Skipped.
    Cancellation is checked between entries, never in the middle of one.
    """
    report = RunReport()
    stop_reason = "not attempted"
    total = len(plan.entries)

    for index, planned in enumerate(plan.entries, start=1):
        if cancel is not None and cancel.is_set():
            stop_reason = "cancelled"
            console.warning("cancelled; remaining entries are skipped")
            break

        console.header(f"[{index}/{total}] {planned.key}")
        states: list[EntryState] = [EntryState.PENDING]
        final, outcome = _run_entry(
            planned,
            tag_store=tag_store,
            nuget=nuget,
            github=github,
            packer=packer,
            settings=settings,
            policy=plan.conflict_policy,
            clock=clock,
            console=console,
            states=states,
        )
        report.record(planned=planned, final=final, outcome=outcome, states=tuple(states))

        line = f"{planned.key}: {describe_outcome(outcome)}"
        if isinstance(outcome, Failed):
            console.error(line)
            if not settings.continue_on_failure:
                stop_reason = f"not attempted: stopped after {planned.key} failed"
                break
        else:
            console.success(line)

    return report.finalize(plan, reason=stop_reason)


@dataclass(frozen=True, slots=True)
class ConflictPreview:
    key: str
    tag: str
    exists: bool
    action: Literal["create", "reuse", "rename", "fail"]
    resolved_tag: str

    def pretty(self) -> str:
        match self.action:
            case "create":
                return f"{self.tag}: new"
            case "reuse":
                return f"{self.tag}: exists, release will be updated"
            case "rename":
                return f"{self.tag}: exists, will publish as {self.resolved_tag}"
            case "fail":
                return f"{self.tag}: exists, release will fail"


def preview_conflicts(
    plan: ReleasePlan, tag_store: TagStore, clock: ReleaseClock
) -> Result[tuple[ConflictPreview, ...], PublishError]:
    """Probe the tag store for every GitHub entry without publishing anything."""
    previews: list[ConflictPreview] = []
    for entry in plan.entries:
        if not entry.publish_github:
            continue
        exists = tag_store.tag_exists(entry.tag)
        if isinstance(exists, Err):
            return exists
        resolved = resolve_conflict(
            entry.tag,
            exists=exists.value,
            policy=plan.conflict_policy,
            utc_timestamp=clock.utc_timestamp,
        )
        match resolved:
            case Err():
                previews.append(ConflictPreview(entry.key, entry.tag, True, "fail", entry.tag))
            case Ok(value=ReuseTag(tag=tag)):
                previews.append(ConflictPreview(entry.key, entry.tag, True, "reuse", tag))
            case Ok(value=CreateTag(tag=tag)) if tag != entry.tag:
                previews.append(ConflictPreview(entry.key, entry.tag, True, "rename", tag))
            case Ok(value=CreateTag(tag=tag)):
                previews.append(ConflictPreview(entry.key, entry.tag, False, "create", tag))
    return Ok(tuple(previews))
