"""bump() — scan, resolve, select and apply dependency updates for one session."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import httpx
import structlog

from infrabump.bump.cache import ResolutionCache
from infrabump.bump.clients import RegistryClient, RegistryClients
from infrabump.bump.models import (
    BumpReport,
    ChartFieldUpdate,
    Dependency,
    DependencyIdentity,
    FetchFailure,
    Project,
    UpdateCandidate,
)
from infrabump.bump.resolver import resolve
from infrabump.bump.scanner import IgnorePredicate, iter_projects
from infrabump.bump.selection import MultiSelect, initial_selection, prompt_multi_select
from infrabump.bump.updater import ApplyOutcome, apply_updates
from infrabump.bump.version import VersionCatalog
from infrabump.core.config import BumpOptions
from infrabump.exceptions import FatalError, FetchError

log = structlog.get_logger("infrabump.bump")


class CatalogSource(Protocol):
    """What the engine needs from the registry layer (see :class:`RegistryClients`)."""

    def backend_for(self, identity: DependencyIdentity) -> RegistryClient: ...

    async def fetch(self, identity: DependencyIdentity) -> VersionCatalog | FetchError: ...


# ── scan + resolve ──────────────────────────────────────────────────────────


async def _resolve_one(
    dep: Dependency, cache: ResolutionCache, options: BumpOptions
) -> UpdateCandidate | FetchError | None:
    result = await cache.get_or_fetch(dep.identity)
    if isinstance(result, FetchError):
        return result
    return resolve(dep, result, options.include_prereleases)


async def resolve_projects(
    projects: list[Project],
    options: BumpOptions,
    source: CatalogSource,
    report: BumpReport,
) -> ResolutionCache:
    """Resolve every dependency of *projects* concurrently into *report*.

    Registry fetches go through one shared :class:`ResolutionCache`, so
    each distinct identity is fetched once however often it is declared.
    Results are recorded in declaration order.
    """
    cache = ResolutionCache(source.fetch, lambda identity: source.backend_for(identity).name)

    checkable: list[Dependency] = []
    for project in projects:
        for dep in project.dependencies:
            if dep.current is None:
                log.info(
                    "bump.unversioned",
                    dependency=dep.label,
                    location=dep.location,
                    raw=dep.current_raw,
                )
                report.unversioned.append(dep)
            else:
                checkable.append(dep)

    results = await asyncio.gather(*(_resolve_one(dep, cache, options) for dep in checkable))

    for dep, result in zip(checkable, results):
        if isinstance(result, FetchError):
            report.fetch_failures.append(FetchFailure(dep, result))
        elif result is None:
            report.up_to_date.append(dep)
        else:
            report.candidates.append(result)

    log.info(
        "bump.resolved",
        dependencies=len(checkable),
        fetches=cache.fetch_count,
        cache_hits=cache.hit_count,
        candidates=len(report.candidates),
        failures=len(report.fetch_failures),
    )
    return cache


async def scan_and_resolve(
    root: Path,
    options: BumpOptions,
    *,
    ignore: IgnorePredicate | None = None,
    source: CatalogSource | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BumpReport:
    """Scan *root* and resolve update candidates without touching any file."""
    report = BumpReport(root=root)

    def _scan() -> list[Project]:
        return list(iter_projects(root, options, ignore=ignore, errors=report.scan_errors))

    # The walk and file parsing block; keep them off the event loop.
    report.projects = await asyncio.to_thread(_scan)
    for error in report.scan_errors:
        log.warning("scanner.error", path=error.path, reason=error.reason)
    log.info(
        "bump.scanned",
        root=str(root),
        projects=len(report.projects),
        dependencies=sum(len(p.dependencies) for p in report.projects),
    )

    if source is not None:
        await resolve_projects(report.projects, options, source, report)
    else:
        async with RegistryClients(options, transport=transport) as clients:
            await resolve_projects(report.projects, options, clients, report)
    return report


# ── select + apply ──────────────────────────────────────────────────────────


def plan_chart_updates(
    projects: list[Project], applied: list[UpdateCandidate], options: BumpOptions
) -> list[ChartFieldUpdate]:
    """Chart-level ``version`` / ``appVersion`` bumps for charts that got updates.

    Each field follows its own requested level; one is never derived from
    the other. Fields that were not valid semver were never recorded.
    """
    levels = {"version": options.chart_version_bump, "appVersion": options.app_version_bump}
    if all(level == "none" for level in levels.values()):
        return []
    touched = {c.dependency.project_root for c in applied}
    updates: list[ChartFieldUpdate] = []
    for project in projects:
        if project.technology != "helm" or project.root not in touched:
            continue
        for chart_field in project.chart_fields:
            level = levels[chart_field.name]
            if level != "none":
                updates.append(ChartFieldUpdate(chart_field, chart_field.version.bump(level)))
    return updates


def apply_selection(report: BumpReport, options: BumpOptions) -> BumpReport:
    """Write the selected candidates, then any chart-level bumps they trigger.

    An interrupt while writing stops the run; what was already written stays
    written and is reported with ``interrupted`` set.
    """
    outcome = ApplyOutcome()
    try:
        apply_updates(report.selected, outcome=outcome)
        chart_updates = plan_chart_updates(report.projects, outcome.applied, options)
        if chart_updates:
            apply_updates((), chart_updates, outcome=outcome)
    except KeyboardInterrupt:
        log.warning("bump.interrupted", applied=len(outcome.applied))
        report.interrupted = True
    report.applied = outcome.applied
    report.chart_updates = outcome.chart_updates
    report.apply_errors = outcome.failures
    return report


def bump(
    root_path: str | Path,
    options: BumpOptions | None = None,
    *,
    select: MultiSelect | None = None,
    ignore: IgnorePredicate | None = None,
    source: CatalogSource | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    dry_run: bool = False,
    on_resolved: Callable[[BumpReport], None] | None = None,
) -> BumpReport:
    """Run one bump session over *root_path* and return its report.

    Scanning runs in a worker thread and registry lookups run concurrently
    on the event loop; selection and file writes happen afterwards on the
    calling thread only. *select* receives ``(label, default_checked)``
    pairs and returns the confirmed indexes; it defaults to the interactive
    terminal prompt. *on_resolved* sees the report once resolution is
    complete, before anything is selected.

    Raises :class:`FatalError` when *root_path* is not a directory. Every
    other problem is recorded in the returned report.
    """
    options = options or BumpOptions()
    root = Path(root_path)
    if not root.exists():
        raise FatalError(f"path does not exist: {root}")
    if not root.is_dir():
        raise FatalError(f"not a directory: {root}")

    report = asyncio.run(
        scan_and_resolve(root, options, ignore=ignore, source=source, transport=transport)
    )
    if on_resolved is not None:
        on_resolved(report)
    if dry_run or not report.candidates:
        return report

    defaults = initial_selection(report.candidates)
    items = [(c.label, checked) for c, checked in zip(report.candidates, defaults)]
    chosen = (select or prompt_multi_select)(items)
    report.selected = [report.candidates[i] for i in sorted(set(chosen))]
    if not report.selected:
        return report
    return apply_selection(report, options)
