from __future__ import annotations

import json
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType
from typing import NoReturn

import typer

from relforge.cli.commands.release_view import print_plan, print_previews, print_report
from relforge.cli.context import CLIContext, build_context
from relforge.core.errors import ErrorCode
from relforge.core.result import Err
from relforge.output.console import Style
from relforge.output.errors import print_release_failure, release_exit_code
from relforge.services.release.errors import ReleaseFailure
from relforge.services.release.executor import preview_conflicts
from relforge.services.release.model import ProjectRecord, ReleasePlan
from relforge.services.release.plan_file import plan_to_dict, read_plan_file, write_plan_file
from relforge.services.release.service import (
    build_collaborators,
    build_plan,
    build_tag_store,
    discover,
    feed_lookup,
    publish_plan,
)
from relforge.services.release.settings import (
    github_preflight,
    preflight,
    resolve_credentials,
)


release_app = typer.Typer(add_completion=False, no_args_is_help=True)


def _exit(err: str, *, code: ErrorCode) -> NoReturn:
    typer.echo(f"error: {err}", err=True)
    raise typer.Exit(code=int(code))


def _fail(ctx: CLIContext, error: ReleaseFailure) -> NoReturn:
    print_release_failure(error, ctx.console)
    raise typer.Exit(code=release_exit_code(error))


def _write_plan(ctx: CLIContext, plan: ReleasePlan, out: Path | None) -> None:
    target = out or ctx.config.plan_output_path
    if target is None:
        return
    written = write_plan_file(path=target, plan=plan)
    if isinstance(written, Err):
        print_release_failure(written.error, ctx.console)
        raise typer.Exit(code=int(ErrorCode.IO_ERROR))
    ctx.console.success(f"plan written: {target}")


@contextmanager
def _cancel_on_interrupt(ctx: CLIContext) -> Iterator[threading.Event]:
    """First Ctrl-C stops after the current entry; the second one aborts."""
    cancel = threading.Event()

    def handler(signum: int, frame: FrameType | None) -> None:
        if cancel.is_set():
            signal.default_int_handler(signum, frame)
        cancel.set()
        ctx.console.warning("interrupt: finishing the current entry, then stopping")

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


@release_app.command("plan")
def plan_cmd(
    config: Path = typer.Option(..., "--config", "-c", help="Release config JSON"),
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON"),
    output: Path | None = typer.Option(None, "--output", help="Write plan JSON to file"),
    probe: bool = typer.Option(
        False, "--probe", help="Check existing tags on GitHub and published versions"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show diagnostic output"),
) -> None:
    """Plan a release (no side effects, no remote calls unless --probe)."""
    ctx = build_context(config, verbose=verbose, stderr=as_json)

    credentials = resolve_credentials(ctx.config, ctx.environ)
    if probe:
        ok = github_preflight(ctx.config, credentials)
        if isinstance(ok, Err):
            print_release_failure(ok.error, ctx.console)
            raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    lookup = feed_lookup(ctx.config) if probe else None
    planned = build_plan(ctx.config, clock=ctx.clock, console=ctx.console, lookup=lookup)
    if isinstance(planned, Err):
        _fail(ctx, planned.error)
    plan = planned.value.plan

    if as_json:
        typer.echo(json.dumps(plan_to_dict(plan), indent=2))
    else:
        print_plan(plan=plan, console=ctx.console)

    _write_plan(ctx, plan, output)

    if not probe:
        return

    tag_store = build_tag_store(ctx.config, credentials, environ=ctx.environ)
    if isinstance(tag_store, Err):
        _fail(ctx, tag_store.error)

    previews = preview_conflicts(plan, tag_store.value, ctx.clock)
    if isinstance(previews, Err):
        _fail(ctx, previews.error)
    print_previews(previews=previews.value, console=ctx.console)


@release_app.command("run")
def run_cmd(
    config: Path = typer.Option(..., "--config", "-c", help="Release config JSON"),
    plan_path: Path | None = typer.Option(None, "--plan", help="Use a previously saved plan JSON"),
    continue_on_failure: bool = typer.Option(
        False, "--continue-on-failure", help="Keep publishing after a failed entry"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show diagnostic output"),
) -> None:
    """Pack and publish every entry of the release plan."""
    ctx = build_context(config, verbose=verbose)

    credentials = resolve_credentials(ctx.config, ctx.environ)
    ok = preflight(ctx.config, credentials)
    if isinstance(ok, Err):
        print_release_failure(ok.error, ctx.console)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    projects: tuple[ProjectRecord, ...]
    if plan_path is not None:
        loaded = read_plan_file(path=plan_path)
        if isinstance(loaded, Err):
            print_release_failure(loaded.error, ctx.console)
            raise typer.Exit(code=int(ErrorCode.IO_ERROR))
        plan = loaded.value
        found = discover(ctx.config, console=ctx.console)
        if isinstance(found, Err):
            _fail(ctx, found.error)
        projects = tuple(found.value)
    else:
        planned = build_plan(
            ctx.config,
            clock=ctx.clock,
            console=ctx.console,
            lookup=feed_lookup(ctx.config),
        )
        if isinstance(planned, Err):
            _fail(ctx, planned.error)
        plan = planned.value.plan
        projects = planned.value.projects
        _write_plan(ctx, plan, None)

    print_plan(plan=plan, console=ctx.console)

    if not yes:
        count = len(plan.entries)
        if not typer.confirm(f"Publish {count} release entr{'y' if count == 1 else 'ies'}?"):
            _exit("aborted", code=ErrorCode.USER_ERROR)

    collaborators = build_collaborators(ctx.config, credentials, projects, environ=ctx.environ)
    if isinstance(collaborators, Err):
        _fail(ctx, collaborators.error)

    with _cancel_on_interrupt(ctx) as cancel:
        report = publish_plan(
            plan,
            collaborators.value,
            config=ctx.config,
            continue_on_failure=continue_on_failure,
            clock=ctx.clock,
            console=ctx.console,
            cancel=cancel,
        )

    print_report(report=report, console=ctx.console)
    for problem in report.verify(plan):
        ctx.console.warning(f"verify: {problem}")
    if report.partial:
        ctx.console.print("some entries were not attempted; re-run to finish", Style.DIM)

    code = report.exit_code()
    if code.is_error:
        raise typer.Exit(code=int(code))
