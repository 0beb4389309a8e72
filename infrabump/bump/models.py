"""Data models for the bump engine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Literal

from infrabump.bump.version import Version
from infrabump.core.config import DEFAULT_TERRAFORM_REGISTRY
from infrabump.exceptions import ApplyError, FetchError, ScanError

Backend = Literal["terraform-module", "helm-chart"]
Technology = Literal["terraform", "helm"]
ChartFieldName = Literal["version", "appVersion"]


@dataclass(frozen=True)
class DependencyIdentity:
    """Registry-addressable key of a module or chart.

    For Terraform modules *host* / *namespace* / *name* / *provider* address
    the registry entry and *submodule* is the ``//path`` suffix. For Helm
    charts *repository* is the chart-repository URL or ``oci://`` reference.
    """

    backend: Backend
    name: str
    namespace: str = ""
    provider: str | None = None
    repository: str | None = None
    host: str | None = None
    submodule: str | None = None

    def for_lookup(self) -> DependencyIdentity:
        """The identity sent to the registry: never carries the submodule path."""
        if self.submodule is None:
            return self
        return replace(self, submodule=None)

    @property
    def key(self) -> str:
        if self.backend == "terraform-module":
            host = self.host or DEFAULT_TERRAFORM_REGISTRY
            return f"{host}/{self.namespace}/{self.name}/{self.provider}"
        return f"{self.repository}#{self.name}"

    @property
    def is_oci(self) -> bool:
        return bool(self.repository and self.repository.startswith("oci://"))

    @property
    def source(self) -> str:
        """Human-readable source as declared (submodule included)."""
        if self.backend == "terraform-module":
            base = f"{self.namespace}/{self.name}/{self.provider}"
            if self.submodule:
                base += f"//{self.submodule}"
            return base
        return f"{self.repository} ({self.name})"


@dataclass(frozen=True)
class Dependency:
    """One declared module or chart dependency and where it lives.

    *line* is the declaration line (``module "x" {`` or ``- name: x``);
    *version_line* is the line holding the version token to rewrite.
    *current* is None when the declared version is missing or unparseable.
    """

    identity: DependencyIdentity
    label: str
    current_raw: str | None
    current: Version | None
    file_path: Path
    line: int
    version_line: int | None
    project_root: Path

    @property
    def location(self) -> str:
        return f"{self.file_path}:{self.line}"


@dataclass(frozen=True)
class ChartField:
    """A chart's own top-level ``version`` / ``appVersion`` field."""

    name: ChartFieldName
    raw: str
    version: Version
    file_path: Path
    line: int
    project_root: Path


@dataclass(frozen=True)
class Project:
    root: Path
    technology: Technology
    dependencies: tuple[Dependency, ...] = ()
    chart_fields: tuple[ChartField, ...] = ()


@dataclass(frozen=True)
class UpdateCandidate:
    """A dependency with a strictly newer eligible version."""

    dependency: Dependency
    new_version: Version
    app_version: str | None = None

    @property
    def delta(self) -> str:
        return f"{self.dependency.current_raw} → {self.new_version.original}"

    @property
    def label(self) -> str:
        dep = self.dependency
        return f"{dep.label} ({dep.file_path}:{dep.line}) {self.delta}"


@dataclass(frozen=True)
class ChartFieldUpdate:
    """A chart-level ``version`` / ``appVersion`` bump driven by operator intent."""

    field: ChartField
    new_version: Version

    @property
    def delta(self) -> str:
        return f"{self.field.raw} → {self.new_version.original}"


@dataclass(frozen=True)
class FetchFailure:
    dependency: Dependency
    error: FetchError


@dataclass(frozen=True)
class ApplyFailure:
    target: UpdateCandidate | ChartFieldUpdate
    error: ApplyError


@dataclass
class BumpReport:
    """Everything one bump session found, selected and applied."""

    root: Path
    projects: list[Project] = field(default_factory=list)
    candidates: list[UpdateCandidate] = field(default_factory=list)
    up_to_date: list[Dependency] = field(default_factory=list)
    fetch_failures: list[FetchFailure] = field(default_factory=list)
    unversioned: list[Dependency] = field(default_factory=list)
    scan_errors: list[ScanError] = field(default_factory=list)
    selected: list[UpdateCandidate] = field(default_factory=list)
    applied: list[UpdateCandidate] = field(default_factory=list)
    chart_updates: list[ChartFieldUpdate] = field(default_factory=list)
    apply_errors: list[ApplyFailure] = field(default_factory=list)
    interrupted: bool = False

    @property
    def dependency_counts(self) -> dict[Path, int]:
        return {p.root: len(p.dependencies) for p in self.projects}

    @property
    def applied_count(self) -> int:
        return len(self.applied) + len(self.chart_updates)

    @property
    def failed_count(self) -> int:
        return len(self.apply_errors)

    @property
    def touched_projects(self) -> set[Path]:
        roots = {c.dependency.project_root for c in self.applied}
        roots.update(u.field.project_root for u in self.chart_updates)
        return roots
