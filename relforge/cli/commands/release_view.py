from __future__ import annotations

from relforge.output.console import ConsoleProtocol, Style
from relforge.services.release.executor import ConflictPreview
from relforge.services.release.model import ReleasePlan
from relforge.services.release.report import Failed, RunReport, Skipped, describe_outcome


def _names(items: tuple[str, ...], limit: int = 3) -> str:
    if len(items) <= limit:
        return ", ".join(items)
    return f"{', '.join(items[:limit])} (+{len(items) - limit})"


def print_plan(*, plan: ReleasePlan, console: ConsoleProtocol) -> None:
    console.header("Release Plan")
    console.print(f"mode: {plan.mode}")
    console.print(f"repo: {plan.repo}")
    console.print(f"tag conflicts: {plan.conflict_policy}")

    rows: list[list[str]] = []
    for entry in plan.entries:
        targets = [
            name
            for name, on in (("nuget", entry.publish_nuget), ("github", entry.publish_github))
            if on
        ]
        rows.append(
            [
                entry.key,
                entry.tag,
                entry.version or "-",
                _names(entry.projects),
                str(len(entry.packages)),
                "+".join(targets) or "-",
            ]
        )
    console.table("Entries", ["entry", "tag", "version", "projects", "packages", "publish"], rows)

    for warning in plan.warnings:
        console.warning(warning.pretty())
    if plan.excluded:
        console.print(f"excluded: {', '.join(plan.excluded)}", Style.DIM)


def print_previews(*, previews: tuple[ConflictPreview, ...], console: ConsoleProtocol) -> None:
    console.header("Tag Probe")
    if not previews:
        console.print("no GitHub releases in this plan", Style.DIM)
        return
    for preview in previews:
        if preview.action == "fail":
            console.error(preview.pretty())
        elif preview.exists:
            console.warning(preview.pretty())
        else:
            console.success(preview.pretty())


def print_report(*, report: RunReport, console: ConsoleProtocol) -> None:
    console.header("Run Report")
    rows = [
        [item.planned.key, item.final.tag, describe_outcome(item.outcome)]
        for item in report.items
    ]
    console.table("Outcomes", ["entry", "tag", "outcome"], rows)

    failed = sum(1 for i in report.items if isinstance(i.outcome, Failed))
    skipped = sum(1 for i in report.items if isinstance(i.outcome, Skipped))
    done = len(report.items) - failed - skipped
    summary = f"{done} done, {failed} failed, {skipped} skipped"
    if failed:
        console.error(summary)
    elif skipped:
        console.warning(summary)
    else:
        console.success(summary)
