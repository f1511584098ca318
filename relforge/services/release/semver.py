from __future__ import annotations

import re
from dataclasses import dataclass, field

_VERSION_RE = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)(?:\.(0|[1-9]\d*))?(?:\.(0|[1-9]\d*))?"
    r"(?:-([0-9A-Za-z][0-9A-Za-z.-]*))?$"
)
_STEP_RE = re.compile(r"^(\d+|[xX])(?:\.(\d+|[xX])){0,3}$")

PrereleaseKey = tuple[tuple[int, int, str], ...]


def _prerelease_key(label: str | None) -> PrereleaseKey:
    # Numeric identifiers compare as numbers and sort before alphanumeric ones.
    if not label:
        return ()
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part.lower())
        for part in label.split(".")
    )


@dataclass(frozen=True, slots=True, eq=False)
class SemVer:
    """Numeric project version (2 to 4 segments) with an optional prerelease label.

    ``text`` keeps the spelling found in the project file so plans show the
    version exactly as the author wrote it. Equality, hashing and ordering all
    use ``sort_key``, so ``1.0``, ``1.0.0`` and ``1.0.0.0`` are the same version.
    """

    major: int
    minor: int
    patch: int = 0
    revision: int | None = None
    prerelease: str | None = None
    text: str = field(default="", compare=False)

    @property
    def sort_key(self) -> tuple[int, int, int, int, int, PrereleaseKey]:
        # A release sorts after any of its prereleases.
        pre_rank = 0 if self.prerelease else 1
        return (
            self.major,
            self.minor,
            self.patch,
            self.revision or 0,
            pre_rank,
            _prerelease_key(self.prerelease),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.sort_key == other.sort_key

    def __hash__(self) -> int:
        return hash(self.sort_key)

    def __lt__(self, other: SemVer) -> bool:
        return self.sort_key < other.sort_key

    def __le__(self, other: SemVer) -> bool:
        return self.sort_key <= other.sort_key

    def __gt__(self, other: SemVer) -> bool:
        return self.sort_key > other.sort_key

    def __ge__(self, other: SemVer) -> bool:
        return self.sort_key >= other.sort_key

    def nuget_text(self) -> str:
        """Version as NuGet writes it into package file names (1.0 -> 1.0.0)."""
        core = f"{self.major}.{self.minor}.{self.patch}"
        if self.revision:
            core += f".{self.revision}"
        if self.prerelease:
            core += f"-{self.prerelease}"
        return core

    def __str__(self) -> str:
        if self.text:
            return self.text
        core = f"{self.major}.{self.minor}.{self.patch}"
        if self.revision is not None:
            core += f".{self.revision}"
        if self.prerelease:
            core += f"-{self.prerelease}"
        return core


def parse_version(text: str) -> SemVer | None:
    raw = text.strip()
    m = _VERSION_RE.match(raw)
    if m is None:
        return None
    patch = int(m.group(3)) if m.group(3) is not None else 0
    revision = int(m.group(4)) if m.group(4) is not None else None
    return SemVer(
        major=int(m.group(1)),
        minor=int(m.group(2)),
        patch=patch,
        revision=revision,
        prerelease=m.group(5),
        text=raw.removeprefix("v"),
    )


def is_step_pattern(text: str) -> bool:
    """True for X-patterns such as ``1.2.X`` (exactly one X segment)."""
    raw = text.strip()
    if _STEP_RE.match(raw) is None:
        return False
    return sum(1 for seg in raw.split(".") if seg in ("x", "X")) == 1


def step_version(pattern: str, current: SemVer | None) -> SemVer | None:
    """Compute the next version for an X-pattern against the last published one.

    The X segment starts from the current value of that segment and is bumped
    until the candidate is strictly greater than ``current``. With no
    published version the baseline is 0.0.0 and the first candidate uses 1
    (or 0 when a fixed segment already lifts it above the baseline).

    Returns None when the fixed segments before X are below ``current``
    (``1.2.X`` after ``2.0.0``): no value of X can step past it.
    """
    segs = pattern.strip().split(".")
    step_index = next(i for i, s in enumerate(segs) if s in ("x", "X"))

    baseline = current or SemVer(0, 0, 0)
    base_parts = [baseline.major, baseline.minor, baseline.patch, baseline.revision or 0]
    width = len(segs)

    parts = [0 if i == step_index else int(s) for i, s in enumerate(segs)]
    if parts[:step_index] < base_parts[:step_index]:
        return None
    parts[step_index] = 1 if current is None else base_parts[step_index]

    def build(values: list[int]) -> SemVer:
        padded = values + [0] * (3 - len(values))
        return SemVer(
            major=padded[0],
            minor=padded[1],
            patch=padded[2],
            revision=values[3] if width == 4 else None,
        )

    candidate = build(parts)
    if candidate > baseline:
        parts[step_index] = 0
        candidate = build(parts)

    # Fixed prefix >= baseline prefix, so bumping X terminates.
    while candidate <= baseline:
        parts[step_index] += 1
        candidate = build(parts)

    return candidate
