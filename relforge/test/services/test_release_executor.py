from __future__ import annotations

import threading
from datetime import UTC, datetime

from relforge.core.result import Err, Ok, Result
from relforge.output.console import MockConsole
from relforge.services.release.errors import PublishError, TagConflictError
from relforge.services.release.executor import (
    ExecutorSettings,
    SinkAlreadyExists,
    SinkDone,
    SinkFailure,
    SinkOutcome,
    execute_plan,
    preview_conflicts,
)
from relforge.services.release.model import ReleasePlan, ReleasePlanEntry, TagConflictPolicy
from relforge.services.release.report import (
    EntryState,
    Failed,
    Published,
    Reused,
    RunReport,
    Skipped,
)
from relforge.services.release.tags import ReleaseClock

CLOCK = ReleaseClock.fixed(datetime(2025, 6, 1, 12, 30, 0, tzinfo=UTC))
STAMP = "20250601123000"


class FakeTagStore:
    def __init__(self, existing: tuple[str, ...] = (), *, down: bool = False) -> None:
        self.existing = set(existing)
        self.down = down
        self.calls: list[str] = []

    def tag_exists(self, tag: str) -> Result[bool, PublishError]:
        self.calls.append(tag)
        if self.down:
            return Err(PublishError(kind="probe", message="HTTP 503"))
        return Ok(tag in self.existing)


class FakeSink:
    def __init__(self, answers: dict[str, list[SinkOutcome]] | None = None) -> None:
        self.answers = answers or {}
        self.calls: list[tuple[str, str, bool]] = []

    def publish(self, entry: ReleasePlanEntry, *, reuse: bool) -> SinkOutcome:
        self.calls.append((entry.key, entry.tag, reuse))
        queue = self.answers.get(entry.key)
        if queue:
            return queue.pop(0)
        return SinkDone(urls=(f"https://example.test/{entry.tag}",))


class FakePacker:
    def __init__(
        self, *, fail: tuple[str, ...] = (), on_pack: threading.Event | None = None
    ) -> None:
        self.fail = fail
        self.on_pack = on_pack
        self.calls: list[str] = []

    def pack(self, entry: ReleasePlanEntry) -> Result[ReleasePlanEntry, PublishError]:
        self.calls.append(entry.key)
        if self.on_pack is not None:
            self.on_pack.set()
        if entry.key in self.fail:
            return Err(PublishError(kind="pack", message=f"dotnet pack failed for {entry.key}"))
        return Ok(
            entry.with_artefacts(
                packages=(f"out/{entry.key}.nupkg",),
                release_assets=entry.release_assets or (f"out/{entry.key}.nupkg",),
            )
        )


def _entry(key: str, tag: str, *, nuget: bool = False, github: bool = True) -> ReleasePlanEntry:
    return ReleasePlanEntry(
        key=key,
        projects=(key,),
        version="2.0.0",
        tag=tag,
        release_name=f"{key} {tag}",
        packages=(f"out/{key}.nupkg",),
        release_assets=(),
        publish_nuget=nuget,
        publish_github=github,
    )


def _plan(*entries: ReleasePlanEntry, policy: TagConflictPolicy = "Reuse") -> ReleasePlan:
    return ReleasePlan(mode="PerProject", conflict_policy=policy, repo="acme", entries=entries)


def _run(
    plan: ReleasePlan,
    *,
    tags: FakeTagStore | None = None,
    nuget: FakeSink | None = None,
    github: FakeSink | None = None,
    packer: FakePacker | None = None,
    settings: ExecutorSettings | None = None,
    cancel: threading.Event | None = None,
) -> RunReport:
    return execute_plan(
        plan,
        tag_store=tags or FakeTagStore(),
        nuget=nuget,
        github=github if github is not None else FakeSink(),
        packer=packer or FakePacker(),
        settings=settings or ExecutorSettings(),
        clock=CLOCK,
        console=MockConsole(),
        cancel=cancel,
    )


def test_fail_policy_halts_before_any_publish() -> None:
    tags = FakeTagStore(("v2.0.0",))
    github = FakeSink()
    nuget = FakeSink()
    packer = FakePacker()
    plan = _plan(_entry("acme", "v2.0.0", nuget=True), policy="Fail")

    report = _run(plan, tags=tags, github=github, nuget=nuget, packer=packer)

    outcome = report.items[0].outcome
    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, TagConflictError)
    assert github.calls == []
    assert nuget.calls == []
    assert packer.calls == []
    assert report.items[0].states == (EntryState.PENDING, EntryState.FAILED)
    assert report.exit_code() != 0


def test_reuse_policy_calls_update_path() -> None:
    github = FakeSink()
    plan = _plan(_entry("acme", "v2.0.0"), policy="Reuse")

    report = _run(plan, tags=FakeTagStore(("v2.0.0",)), github=github)

    assert github.calls == [("acme", "v2.0.0", True)]
    assert report.items[0].outcome == Reused("v2.0.0", ("https://example.test/v2.0.0",))
    assert report.success


def test_fail_fast_skips_remaining_entries() -> None:
    failure = SinkFailure(PublishError(kind="github", message="HTTP 422"))
    github = FakeSink({"B": [failure]})
    plan = _plan(_entry("A", "A-v1"), _entry("B", "B-v1"), _entry("C", "C-v1"))

    report = _run(plan, github=github)

    outcomes = [item.outcome for item in report.items]
    assert isinstance(outcomes[0], Published)
    assert isinstance(outcomes[1], Failed)
    assert isinstance(outcomes[2], Skipped)
    assert outcomes[2].reason.startswith("not attempted")
    assert [c[0] for c in github.calls] == ["A", "B"]
    assert len(report.items) == len(plan.entries)
    assert report.partial


def test_continue_on_failure_attempts_every_entry() -> None:
    failure = SinkFailure(PublishError(kind="github", message="HTTP 422"))
    github = FakeSink({"B": [failure]})
    plan = _plan(_entry("A", "A-v1"), _entry("B", "B-v1"), _entry("C", "C-v1"))

    report = _run(plan, github=github, settings=ExecutorSettings(continue_on_failure=True))

    assert [type(i.outcome) for i in report.items] == [Published, Failed, Published]
    assert not report.success


def test_append_timestamp_publishes_suffixed_tag() -> None:
    github = FakeSink()
    plan = _plan(_entry("acme", "v2.0.0"), policy="AppendUtcTimestamp")

    report = _run(plan, tags=FakeTagStore(("v2.0.0",)), github=github)

    suffixed = f"v2.0.0-{STAMP}"
    assert github.calls == [("acme", suffixed, False)]
    item = report.items[0]
    assert item.outcome == Published(suffixed, (f"https://example.test/{suffixed}",))
    assert item.planned.tag == "v2.0.0"
    assert item.final.release_name == f"acme {suffixed}"
    assert report.verify(plan) == []


def test_publish_time_conflict_retries_once_on_update_path() -> None:
    github = FakeSink({"acme": [SinkAlreadyExists("release v2.0.0")]})
    plan = _plan(_entry("acme", "v2.0.0"), policy="Reuse")

    report = _run(plan, github=github)

    assert github.calls == [("acme", "v2.0.0", False), ("acme", "v2.0.0", True)]
    assert isinstance(report.items[0].outcome, Reused)


def test_second_publish_time_conflict_is_terminal() -> None:
    github = FakeSink(
        {"acme": [SinkAlreadyExists("release v2.0.0"), SinkAlreadyExists("release again")]}
    )
    plan = _plan(_entry("acme", "v2.0.0"), policy="AppendUtcTimestamp")

    report = _run(plan, github=github)

    assert len(github.calls) == 2
    assert github.calls[1][1] == f"v2.0.0-{STAMP}"
    outcome = report.items[0].outcome
    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, TagConflictError)


def test_publish_time_conflict_with_fail_policy() -> None:
    github = FakeSink({"acme": [SinkAlreadyExists("release v2.0.0")]})
    report = _run(_plan(_entry("acme", "v2.0.0"), policy="Fail"), github=github)

    assert len(github.calls) == 1
    assert isinstance(report.items[0].outcome, Failed)


def test_nuget_duplicate_counts_as_reuse_with_skip_duplicate() -> None:
    nuget = FakeSink({"A": [SinkAlreadyExists("A.2.0.0.nupkg")]})
    plan = _plan(_entry("A", "A-v2", nuget=True, github=False))

    report = _run(plan, nuget=nuget, settings=ExecutorSettings(skip_duplicate=True))

    assert report.items[0].outcome == Reused("A-v2")


def test_nuget_duplicate_fails_without_skip_duplicate() -> None:
    nuget = FakeSink({"A": [SinkAlreadyExists("A.2.0.0.nupkg")]})
    github = FakeSink()
    plan = _plan(_entry("A", "A-v2", nuget=True, github=True))

    report = _run(plan, nuget=nuget, github=github)

    outcome = report.items[0].outcome
    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, PublishError)
    assert outcome.error.kind == "nuget"
    assert github.calls == []


def test_state_trail_for_full_publish() -> None:
    plan = _plan(_entry("A", "A-v2", nuget=True, github=True))
    report = _run(plan, nuget=FakeSink())

    assert report.items[0].states == (
        EntryState.PENDING,
        EntryState.PACKING,
        EntryState.PUBLISHING_NUGET,
        EntryState.PUBLISHING_GITHUB,
        EntryState.PUBLISHED,
    )
    outcome = report.items[0].outcome
    assert isinstance(outcome, Published)
    assert outcome.urls == ("https://example.test/A-v2", "https://example.test/A-v2")


def test_pack_failure_stops_entry() -> None:
    github = FakeSink()
    report = _run(_plan(_entry("A", "A-v2")), github=github, packer=FakePacker(fail=("A",)))

    assert isinstance(report.items[0].outcome, Failed)
    assert report.items[0].states == (EntryState.PENDING, EntryState.PACKING, EntryState.FAILED)
    assert github.calls == []


def test_probe_failure_is_reported_per_entry() -> None:
    report = _run(_plan(_entry("A", "A-v2")), tags=FakeTagStore(down=True))

    outcome = report.items[0].outcome
    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, PublishError)
    assert outcome.error.kind == "probe"


def test_cancel_before_start_skips_everything() -> None:
    cancel = threading.Event()
    cancel.set()
    github = FakeSink()
    plan = _plan(_entry("A", "A-v1"), _entry("B", "B-v1"))

    report = _run(plan, github=github, cancel=cancel)

    assert github.calls == []
    assert [i.outcome for i in report.items] == [Skipped("cancelled"), Skipped("cancelled")]


def test_cancel_during_entry_finishes_current_one() -> None:
    cancel = threading.Event()
    plan = _plan(_entry("A", "A-v1"), _entry("B", "B-v1"))

    report = _run(plan, packer=FakePacker(on_pack=cancel), cancel=cancel)

    assert isinstance(report.items[0].outcome, Published)
    assert report.items[1].outcome == Skipped("cancelled")


def test_entries_without_github_do_not_probe_tags() -> None:
    tags = FakeTagStore()
    _run(_plan(_entry("A", "A-v1", nuget=True, github=False)), tags=tags, nuget=FakeSink())
    assert tags.calls == []


def test_preview_conflicts_never_publishes() -> None:
    plan_entries = (
        _entry("A", "A-v1"),
        _entry("B", "B-v1"),
        _entry("C", "C-v1", github=False),
    )
    tags = FakeTagStore(("B-v1",))

    reuse = preview_conflicts(_plan(*plan_entries, policy="Reuse"), tags, CLOCK)
    assert isinstance(reuse, Ok)
    assert [(p.key, p.action) for p in reuse.value] == [("A", "create"), ("B", "reuse")]

    rename = preview_conflicts(_plan(*plan_entries, policy="AppendUtcTimestamp"), tags, CLOCK)
    assert isinstance(rename, Ok)
    assert rename.value[1].resolved_tag == f"B-v1-{STAMP}"

    fail = preview_conflicts(_plan(*plan_entries, policy="Fail"), tags, CLOCK)
    assert isinstance(fail, Ok)
    assert fail.value[1].action == "fail"
    assert "fail" in fail.value[1].pretty()


def test_preview_conflicts_propagates_probe_error() -> None:
    result = preview_conflicts(_plan(_entry("A", "A-v1")), FakeTagStore(down=True), CLOCK)
    assert isinstance(result, Err)
    assert result.error.kind == "probe"


def test_nuget_entry_without_sink_fails_before_packing() -> None:
    packer = FakePacker()
    report = _run(_plan(_entry("A", "A-v2", nuget=True, github=False)), packer=packer)

    outcome = report.items[0].outcome
    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, PublishError)
    assert outcome.error.kind == "nuget"
    assert packer.calls == []


def test_github_entry_without_sink_fails_before_tag_check() -> None:
    tags = FakeTagStore()
    packer = FakePacker()
    report = execute_plan(
        _plan(_entry("A", "A-v2")),
        tag_store=tags,
        nuget=None,
        github=None,
        packer=packer,
        settings=ExecutorSettings(),
        clock=CLOCK,
        console=MockConsole(),
    )

    outcome = report.items[0].outcome
    assert isinstance(outcome, Failed)
    assert isinstance(outcome.error, PublishError)
    assert outcome.error.kind == "github"
    assert tags.calls == []
    assert packer.calls == []
