"""Run report: one item per plan entry, in plan order.

The report is the only mutable state of a run and is owned by the publish
loop. ``finalize`` guarantees the item count equals the plan's entry count;
entries the loop never reached are reported as Skipped, not dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from relforge.core.errors import ErrorCode
from relforge.services.release.errors import PublishError, TagConflictError, pretty
from relforge.services.release.model import ReleasePlan, ReleasePlanEntry
from relforge.services.release.tags import strip_utc_suffix


class EntryState(Enum):
    PENDING = "pending"
    PACKING = "packing"
    PUBLISHING_NUGET = "publishing-nuget"
    PUBLISHING_GITHUB = "publishing-github"
    PUBLISHED = "published"
    REUSED = "reused"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {EntryState.PUBLISHED, EntryState.REUSED, EntryState.SKIPPED, EntryState.FAILED}
)


@dataclass(frozen=True, slots=True)
class Published:
    tag: str
    urls: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Reused:
    tag: str
    urls: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Skipped:
    reason: str


@dataclass(frozen=True, slots=True)
class Failed:
    error: PublishError | TagConflictError

    @property
    def reason(self) -> str:
        return pretty(self.error)


Outcome = Published | Reused | Skipped | Failed


def outcome_state(outcome: Outcome) -> EntryState:
    match outcome:
        case Published():
            return EntryState.PUBLISHED
        case Reused():
            return EntryState.REUSED
        case Skipped():
            return EntryState.SKIPPED
        case Failed():
            return EntryState.FAILED


def describe_outcome(outcome: Outcome) -> str:
    match outcome:
        case Published(tag=tag):
            return f"published {tag}"
        case Reused(tag=tag):
            return f"reused {tag}"
        case Skipped(reason=reason):
            return f"skipped: {reason}"
        case Failed() as failed:
            return f"failed: {failed.reason}"


@dataclass(frozen=True, slots=True)
class ReportItem:
    planned: ReleasePlanEntry
    final: ReleasePlanEntry
    outcome: Outcome
    states: tuple[EntryState, ...]


def _empty_items() -> list[ReportItem]:
    return []


@dataclass
class RunReport:
    items: list[ReportItem] = field(default_factory=_empty_items)
    finalized: bool = False

    def record(
        self,
        *,
        planned: ReleasePlanEntry,
        final: ReleasePlanEntry,
        outcome: Outcome,
        states: tuple[EntryState, ...],
    ) -> None:
        if self.finalized:
            raise RuntimeError("run report is already finalized")
        final_state = outcome_state(outcome)
        trail = states if states and states[-1] == final_state else (*states, final_state)
        self.items.append(ReportItem(planned=planned, final=final, outcome=outcome, states=trail))

    def finalize(self, plan: ReleasePlan, *, reason: str = "not attempted") -> RunReport:
        """Mark entries with no item as Skipped and freeze the report."""
        reported = {item.planned.key for item in self.items}
        for entry in plan.entries[len(self.items) :]:
            if entry.key in reported:
                continue
            self.items.append(
                ReportItem(
                    planned=entry,
                    final=entry,
                    outcome=Skipped(reason),
                    states=(EntryState.PENDING, EntryState.SKIPPED),
                )
            )
        self.finalized = True
        return self

    @property
    def failed(self) -> list[ReportItem]:
        return [i for i in self.items if isinstance(i.outcome, Failed)]

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def partial(self) -> bool:
        return any(isinstance(i.outcome, Skipped) for i in self.items)

    def exit_code(self) -> ErrorCode:
        return ErrorCode.OK if self.success else ErrorCode.PUBLISH_ERROR

    def verify(self, plan: ReleasePlan) -> list[str]:
        """Confirm every released tag and asset set matches the plan.

        Returns human-readable discrepancies; empty means the run matches.
        A tag may differ from the plan only by a UTC timestamp suffix added by
        the AppendUtcTimestamp policy.
        """
        problems: list[str] = []
        if len(self.items) != len(plan.entries):
            problems.append(
                f"report has {len(self.items)} item(s) but the plan has {len(plan.entries)} entries"
            )

        for entry, item in zip(plan.entries, self.items):
            if item.planned.key != entry.key:
                problems.append(f"report order differs from plan at {entry.key}")
                continue
            if not isinstance(item.outcome, Published | Reused):
                continue
            tag = item.outcome.tag
            if tag != entry.tag and strip_utc_suffix(tag) != entry.tag:
                problems.append(
                    f"{entry.key}: released tag {tag} does not match planned {entry.tag}"
                )
            # Assets may be unknown at plan time; they are then fixed by packing.
            planned_assets = set(entry.release_assets)
            attached = set(item.final.release_assets)
            if entry.publish_github and planned_assets and attached != planned_assets:
                problems.append(f"{entry.key}: attached assets differ from plan")
        return problems

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "items": [
                {
                    "key": i.planned.key,
                    "projects": list(i.planned.projects),
                    "planned_tag": i.planned.tag,
                    "tag": i.final.tag,
                    "outcome": outcome_state(i.outcome).value,
                    "detail": describe_outcome(i.outcome),
                    "states": [s.value for s in i.states],
                }
                for i in self.items
            ],
        }
