from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import typer

from relforge.core.errors import ErrorCode
from relforge.core.result import Err
from relforge.output.console import ConsoleProtocol, RichConsole
from relforge.output.errors import print_release_failure
from relforge.services.release.settings import ReleaseConfig, load_release_config
from relforge.services.release.tags import ReleaseClock


@dataclass(frozen=True, slots=True)
class CLIContext:
    config: ReleaseConfig
    console: ConsoleProtocol
    clock: ReleaseClock
    environ: Mapping[str, str]


def build_context(
    config_path: Path, *, verbose: bool = False, stderr: bool = False
) -> CLIContext:
    console = RichConsole(verbose=verbose, stderr=stderr)

    loaded = load_release_config(config_path)
    if isinstance(loaded, Err):
        print_release_failure(loaded.error, console)
        code = ErrorCode.IO_ERROR if not config_path.is_file() else ErrorCode.USER_ERROR
        raise typer.Exit(code=int(code))

    return CLIContext(
        config=loaded.value,
        console=console,
        clock=ReleaseClock.now(),
        environ=dict(os.environ),
    )
