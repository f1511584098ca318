from __future__ import annotations

import json
import shutil
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from time import sleep

from relforge.core.result import Err, Ok, Result
from relforge.core.structured import as_str_dict, get_str
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
    GH_READ_RETRY_ATTEMPTS,
    GH_READ_RETRY_DELAY_SECONDS,
    GH_TIMEOUT_SECONDS,
    GH_UPLOAD_TIMEOUT_SECONDS,
)


def _is_transient_gh_error(error: ProcessError) -> bool:
    text = f"{error.stderr}\n{error.stdout}".lower()
    markers = (
        "timed out",
        "timeout",
        "connection reset",
        "connection refused",
        "temporarily unavailable",
        "service unavailable",
        "bad gateway",
        "gateway timeout",
        "tls handshake timeout",
        "network is unreachable",
        "http 429",
        "http 500",
        "http 502",
        "http 503",
        "http 504",
    )
    if error.returncode == -1 and "timed out" in text:
        return True
    return any(marker in text for marker in markers)


def _is_not_found(error: ProcessError) -> bool:
    text = error.output.lower()
    return "http 404" in text or "not found" in text


def _is_already_exists(error: ProcessError) -> bool:
    text = error.output.lower()
    return "already exists" in text or "already_exists" in text


def gh_env(token: str, environ: Mapping[str, str]) -> dict[str, str]:
    """Environment for gh with the token passed out of argv."""
    env = dict(environ)
    env["GH_TOKEN"] = token
    env["GH_PROMPT_DISABLED"] = "1"
    return env


def run_gh_read(
    *,
    root: Path,
    cmd: list[str],
    env: dict[str, str] | None = None,
    timeout: float = GH_TIMEOUT_SECONDS,
    retry_attempts: int = GH_READ_RETRY_ATTEMPTS,
) -> Result[str, ProcessError]:
    """Run an idempotent gh call, retrying transient network failures."""
    attempts = max(1, retry_attempts)
    result = run_process(cmd, cwd=root, env=env, timeout=timeout)
    for attempt in range(1, attempts):
        if isinstance(result, Ok) or not _is_transient_gh_error(result.error):
            break
        sleep(GH_READ_RETRY_DELAY_SECONDS * attempt)
        result = run_process(cmd, cwd=root, env=env, timeout=timeout)
    return result


def ensure_gh_available() -> Result[None, PublishError]:
    if shutil.which("gh") is None:
        return Err(
            PublishError(
                kind="github",
                message="gh: missing",
                hint="Install GitHub CLI: https://cli.github.com/",
            )
        )
    return Ok(None)


@dataclass(frozen=True, slots=True)
class GitHubTagStore:
    root: Path
    repo: str  # owner/name
    env: dict[str, str] | None = None

    def tag_exists(self, tag: str) -> Result[bool, PublishError]:
        endpoint = f"repos/{self.repo}/git/ref/tags/{tag}"
        result = run_gh_read(root=self.root, cmd=["gh", "api", endpoint], env=self.env)
        match result:
            case Ok():
                return Ok(True)
            case Err(error) if _is_not_found(error):
                return Ok(False)
            case Err(error):
                return Err(
                    PublishError(
                        kind="probe",
                        message=f"cannot check tag {tag} in {self.repo}",
                        hint=error.stderr.strip() or endpoint,
                    )
                )


@dataclass(frozen=True, slots=True)
class GitHubReleaseSink:
    """Creates or updates GitHub releases through the gh CLI."""

    root: Path
    repo: str  # owner/name
    env: dict[str, str] | None = None
    prerelease: bool = False
    generate_notes: bool = False

    def _release_url(self, tag: str) -> Result[str | None, ProcessError]:
        cmd = ["gh", "release", "view", tag, "--repo", self.repo, "--json", "url"]
        result = run_gh_read(root=self.root, cmd=cmd, env=self.env)
        if isinstance(result, Err):
            if _is_not_found(result.error):
                return Ok(None)
            return result
        try:
            obj: object = json.loads(result.value)
        except json.JSONDecodeError:
            return Ok(None)
        data = as_str_dict(obj)
        return Ok(get_str(data, "url") if data is not None else None)

    def _create(self, entry: ReleasePlanEntry) -> SinkOutcome:
        cmd = [
            "gh",
            "release",
            "create",
            entry.tag,
            *entry.release_assets,
            "--repo",
            self.repo,
            "--title",
            entry.release_name,
        ]
        if self.prerelease:
            cmd.append("--prerelease")
        if self.generate_notes:
            cmd.append("--generate-notes")
        else:
            cmd.extend(["--notes", ""])

        result = run_process(cmd, cwd=self.root, env=self.env, timeout=GH_UPLOAD_TIMEOUT_SECONDS)
        if isinstance(result, Err):
            if _is_already_exists(result.error):
                return SinkAlreadyExists(detail=f"release {entry.tag}")
            return SinkFailure(
                PublishError(
                    kind="github",
                    message=f"gh release create failed: {entry.tag}",
                    hint=result.error.stderr.strip() or None,
                )
            )
        url = result.value.strip()
        return SinkDone(urls=(url,) if url else ())

    def _update(self, entry: ReleasePlanEntry) -> SinkOutcome:
        existing = self._release_url(entry.tag)
        if isinstance(existing, Err):
            return SinkFailure(
                PublishError(
                    kind="github",
                    message=f"cannot read release {entry.tag}",
                    hint=existing.error.stderr.strip() or None,
                )
            )
        if existing.value is None:
            # The tag exists without a release; attach a new release to it.
            return self._create(entry)

        if entry.release_assets:
            cmd = [
                "gh",
                "release",
                "upload",
                entry.tag,
                *entry.release_assets,
                "--repo",
                self.repo,
                "--clobber",
            ]
            result = run_process(
                cmd, cwd=self.root, env=self.env, timeout=GH_UPLOAD_TIMEOUT_SECONDS
            )
            if isinstance(result, Err):
                return SinkFailure(
                    PublishError(
                        kind="github",
                        message=f"gh release upload failed: {entry.tag}",
                        hint=result.error.stderr.strip() or None,
                    )
                )
        return SinkDone(urls=(existing.value,))

    def publish(self, entry: ReleasePlanEntry, *, reuse: bool) -> SinkOutcome:
        return self._update(entry) if reuse else self._create(entry)
