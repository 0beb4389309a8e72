"""UpdateResolver — pick the newest eligible version for a dependency."""

from __future__ import annotations

from infrabump.bump.models import Dependency, UpdateCandidate
from infrabump.bump.version import CatalogEntry, Version, VersionCatalog


def is_eligible(version: Version, current: Version, include_prereleases: bool) -> bool:
    """Whether *version* may replace *current*.

    It must be strictly newer. Pre-releases are only eligible when asked
    for, or when *current* is itself a pre-release of the same release.
    """
    if not version > current:
        return False
    if not version.is_prerelease or include_prereleases:
        return True
    return current.is_prerelease and current.release == version.release


def select_update(
    current: Version, catalog: VersionCatalog, include_prereleases: bool
) -> CatalogEntry | None:
    """The highest catalog entry eligible to replace *current*, if any."""
    # Entries are sorted newest first.
    for entry in catalog:
        if is_eligible(entry.version, current, include_prereleases):
            return entry
    return None


def resolve(
    dependency: Dependency, catalog: VersionCatalog, include_prereleases: bool
) -> UpdateCandidate | None:
    """Build an :class:`UpdateCandidate` or return None when there is nothing newer.

    Dependencies whose current version could not be parsed never produce a
    candidate.
    """
    if dependency.current is None:
        return None
    entry = select_update(dependency.current, catalog, include_prereleases)
    if entry is None:
        return None
    return UpdateCandidate(dependency, entry.version, entry.app_version)
