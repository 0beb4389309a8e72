"""Semantic versions and per-identity version catalogs."""

from __future__ import annotations

import functools
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from infrabump.exceptions import VersionParseError

# https://semver.org grammar, with an optional leading "v" as used by many
# Helm repositories and OCI tag lists.
_SEMVER_RE = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

# Loose form found inside constraints: "~> 5.0", ">= 1.2.3", "^2.1.0-rc.1"
_LOOSE_RE = re.compile(
    r"v?(\d+)\.(\d+)(?:\.(\d+))?"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
)


def _prerelease_key(prerelease: tuple[str, ...]) -> tuple:
    # Releases sort above any pre-release of the same major.minor.patch.
    if not prerelease:
        return (1,)
    ids = tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in prerelease)
    return (0, ids)


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """A semantic version. Build metadata is kept but ignored for ordering."""

    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()
    build: tuple[str, ...] = ()
    text: str = field(default="", compare=False)

    # ── construction ──────────────────────────────────────────────────────

    @classmethod
    def parse(cls, text: str) -> Version:
        """Parse a strict semantic version (optional leading ``v``)."""
        m = _SEMVER_RE.match(text.strip())
        if m is None:
            raise VersionParseError(f"not a semantic version: {text!r}")
        major, minor, patch, pre, build = m.groups()
        return cls(
            int(major),
            int(minor),
            int(patch),
            tuple(pre.split(".")) if pre else (),
            tuple(build.split(".")) if build else (),
            text.strip(),
        )

    @classmethod
    def coerce(cls, text: str) -> Version:
        """Extract the first ``N.N[.N]`` version from a constraint expression.

        Missing patch components are padded with zero, so ``~> 5.0`` gives
        ``5.0.0``.
        """
        m = _LOOSE_RE.search(text)
        if m is None:
            raise VersionParseError(f"no version found in {text!r}")
        major, minor, patch, pre, build = m.groups()
        return cls(
            int(major),
            int(minor),
            int(patch or 0),
            tuple(pre.split(".")) if pre else (),
            tuple(build.split(".")) if build else (),
            m.group(0),
        )

    @classmethod
    def is_valid(cls, text: str) -> bool:
        return _SEMVER_RE.match(text.strip()) is not None

    # ── ordering ──────────────────────────────────────────────────────────

    def _key(self) -> tuple:
        return (self.major, self.minor, self.patch, _prerelease_key(self.prerelease))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    # ── helpers ───────────────────────────────────────────────────────────

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    @property
    def release(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def bump(self, level: str) -> Version:
        """Return the next version at *level* (``major``, ``minor`` or ``patch``).

        Pre-release and build metadata are dropped; a leading ``v`` in the
        original spelling is kept.
        """
        if level == "major":
            parts = (self.major + 1, 0, 0)
        elif level == "minor":
            parts = (self.major, self.minor + 1, 0)
        elif level == "patch":
            parts = (self.major, self.minor, self.patch + 1)
        else:
            raise ValueError(f"unknown bump level: {level}")
        prefix = "v" if self.text.startswith("v") else ""
        return Version(*parts, text=prefix + "%d.%d.%d" % parts)

    def __str__(self) -> str:
        s = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            s += "-" + ".".join(self.prerelease)
        if self.build:
            s += "+" + ".".join(self.build)
        return s

    @property
    def original(self) -> str:
        """The spelling the version was parsed from (falls back to ``str()``)."""
        return self.text or str(self)


@dataclass(frozen=True)
class CatalogEntry:
    """One published version, with the chart ``appVersion`` when known."""

    version: Version
    app_version: str | None = None


@dataclass(frozen=True)
class VersionCatalog:
    """All versions one registry reports for one identity, newest first."""

    identity_key: str
    entries: tuple[CatalogEntry, ...]
    skipped: int = 0

    @classmethod
    def build(
        cls,
        identity_key: str,
        raw: Iterable[str | tuple[str, str | None]],
    ) -> VersionCatalog:
        """Build a catalog from raw version strings or ``(version, appVersion)`` pairs.

        Strings that are not valid semantic versions are dropped and counted
        in :attr:`skipped`.
        """
        best: dict[Version, CatalogEntry] = {}
        skipped = 0
        for item in raw:
            text, app_version = item if isinstance(item, tuple) else (item, None)
            try:
                version = Version.parse(str(text))
            except VersionParseError:
                skipped += 1
                continue
            # Equal-precedence duplicates (differing build metadata): keep the first.
            best.setdefault(version, CatalogEntry(version, app_version))
        entries = tuple(sorted(best.values(), key=lambda e: e.version, reverse=True))
        return cls(identity_key, entries, skipped)

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def versions(self) -> list[Version]:
        return [e.version for e in self.entries]

    def latest(self) -> CatalogEntry | None:
        return self.entries[0] if self.entries else None
