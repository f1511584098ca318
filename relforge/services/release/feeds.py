"""Last published version lookup.

A source is a NuGet v3 service index (``.../index.json``), a flat-container
base URL, or a local folder of ``.nupkg`` files. The highest version across
all sources wins. A package a feed has never seen is not an error.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from relforge.core.result import Err, Ok, Result
from relforge.core.structured import as_obj_list, as_str_dict, get_str, get_str_list
from relforge.output.console import ConsoleProtocol
from relforge.platform.http import HttpClient, HttpError
from relforge.services.release.errors import PublishError
from relforge.services.release.model import ProjectRecord
from relforge.services.release.semver import SemVer, parse_version

_BASE_ADDRESS_TYPE = "packagebaseaddress"


def _is_local(source: str) -> bool:
    return "://" not in source or source.lower().startswith("file://")


def _feed_error(error: HttpError) -> PublishError:
    return PublishError(
        kind="probe",
        message=f"cannot query package feed: {error}",
        hint="check VersionSources or the network",
    )


def _resource_types(resource: dict[str, object]) -> list[str]:
    raw = resource.get("@type")
    if isinstance(raw, str):
        return [raw]
    return [t for t in as_obj_list(raw) or [] if isinstance(t, str)]


class NuGetFeedLookup:
    """Finds the highest published version of a package id."""

    def __init__(
        self,
        sources: Sequence[str],
        client: HttpClient,
        *,
        include_prerelease: bool = False,
    ) -> None:
        self.sources = tuple(s.strip() for s in sources if s.strip())
        self.client = client
        self.include_prerelease = include_prerelease
        self._bases: dict[str, str | None] = {}

    def latest(self, package_id: str) -> Result[SemVer | None, PublishError]:
        best: SemVer | None = None
        for source in self.sources:
            found: Result[SemVer | None, PublishError]
            if _is_local(source):
                found = Ok(self._from_folder(package_id, source))
            else:
                found = self._from_feed(package_id, source)
            if isinstance(found, Err):
                return found
            if found.value is not None and (best is None or found.value > best):
                best = found.value
        return Ok(best)

    def _pick(self, texts: Sequence[str]) -> SemVer | None:
        best: SemVer | None = None
        for text in texts:
            version = parse_version(text)
            if version is None:
                continue
            if version.prerelease and not self.include_prerelease:
                continue
            if best is None or version > best:
                best = version
        return best

    def _from_folder(self, package_id: str, source: str) -> SemVer | None:
        folder = Path(source.removeprefix("file://")).expanduser()
        if not folder.is_dir():
            return None
        prefix = f"{package_id.lower()}."
        texts: list[str] = []
        for path in sorted(folder.rglob("*.nupkg")):
            stem = path.name[: -len(".nupkg")]
            if not stem.lower().startswith(prefix):
                continue
            # Forge.Web.1.0.0 does not parse as a version of Forge.
            texts.append(stem[len(prefix) :].removesuffix(".symbols"))
        return self._pick(texts)

    def _base_address(self, source: str) -> Result[str | None, PublishError]:
        if not source.lower().endswith("index.json"):
            return Ok(source.rstrip("/"))
        if source in self._bases:
            return Ok(self._bases[source])

        index = self.client.get_json(source)
        if isinstance(index, Err):
            if index.error.not_found:
                self._bases[source] = None
                return Ok(None)
            return Err(_feed_error(index.error))

        base: str | None = None
        for item in as_obj_list(index.value.get("resources")) or []:
            resource = as_str_dict(item)
            if resource is None:
                continue
            if any(_BASE_ADDRESS_TYPE in t.lower() for t in _resource_types(resource)):
                address = get_str(resource, "@id")
                if address:
                    base = address.rstrip("/")
                    break
        self._bases[source] = base
        return Ok(base)

    def _from_feed(self, package_id: str, source: str) -> Result[SemVer | None, PublishError]:
        base = self._base_address(source)
        if isinstance(base, Err):
            return base
        if base.value is None:
            return Ok(None)

        listing = self.client.get_json(f"{base.value}/{package_id.lower()}/index.json")
        if isinstance(listing, Err):
            if listing.error.not_found:
                return Ok(None)
            return Err(_feed_error(listing.error))
        return Ok(self._pick(get_str_list(listing.value, "versions")))


def fill_last_published(
    projects: Sequence[ProjectRecord],
    lookup: NuGetFeedLookup,
    *,
    names: Sequence[str],
    console: ConsoleProtocol,
) -> Result[list[ProjectRecord], PublishError]:
    """Return ``projects`` with ``last_published`` set for the named ones."""
    wanted = {n.lower() for n in names}
    out: list[ProjectRecord] = []
    for project in projects:
        if project.name.lower() not in wanted:
            out.append(project)
            continue
        package_id = project.identifier or project.name
        latest = lookup.latest(package_id)
        if isinstance(latest, Err):
            return latest
        if latest.value is None:
            console.debug(f"{package_id}: not published yet")
        else:
            console.debug(f"{package_id}: last published {latest.value}")
        out.append(replace(project, last_published=latest.value))
    return Ok(out)
