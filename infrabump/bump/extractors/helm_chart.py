"""Extractor for Helm ``Chart.yaml`` dependencies and chart-level versions."""

from __future__ import annotations

from pathlib import Path

import structlog
import yaml

from infrabump.bump.models import ChartField, Dependency, DependencyIdentity, Project
from infrabump.bump.registry import register_extractor
from infrabump.bump.version import Version
from infrabump.exceptions import ScanError, VersionParseError

log = structlog.get_logger("infrabump.bump")

CHART_FILE = "Chart.yaml"

# Repository references with no registry to query.
_LOCAL_PREFIXES = ("file://", "@", "alias:")


def _scalar_map(node: yaml.MappingNode) -> dict[str, yaml.Node]:
    """Map scalar keys of a mapping node to their value nodes."""
    out: dict[str, yaml.Node] = {}
    for key_node, value_node in node.value:
        if isinstance(key_node, yaml.ScalarNode):
            out.setdefault(key_node.value, value_node)
    return out


def _scalar(node: yaml.Node | None) -> str | None:
    if isinstance(node, yaml.ScalarNode):
        return node.value
    return None


def _line(node: yaml.Node) -> int:
    return node.start_mark.line + 1


def parse_chart(
    content: str, file_path: Path, project_root: Path, errors: list[ScanError]
) -> tuple[list[Dependency], list[ChartField]]:
    """Extract chart dependencies and bumpable top-level fields.

    The YAML is composed rather than loaded so every value keeps its source
    line, which is what the updater later rewrites.
    """
    try:
        root = yaml.compose(content, Loader=yaml.SafeLoader)
    except yaml.YAMLError as exc:
        errors.append(ScanError(str(file_path), f"malformed YAML: {exc}"))
        return [], []
    if root is None:
        return [], []
    if not isinstance(root, yaml.MappingNode):
        errors.append(ScanError(str(file_path), "top level is not a mapping"))
        return [], []

    top = _scalar_map(root)

    fields: list[ChartField] = []
    for name in ("version", "appVersion"):
        node = top.get(name)
        raw = _scalar(node)
        if raw is None or not Version.is_valid(raw):
            # Malformed chart versions are left alone.
            continue
        fields.append(
            ChartField(
                name=name,  # type: ignore[arg-type]
                raw=raw,
                version=Version.parse(raw),
                file_path=file_path,
                line=_line(node),  # type: ignore[arg-type]
                project_root=project_root,
            )
        )

    deps: list[Dependency] = []
    deps_node = top.get("dependencies")
    if deps_node is None:
        return deps, fields
    if not isinstance(deps_node, yaml.SequenceNode):
        errors.append(ScanError(str(file_path), "'dependencies' is not a list"))
        return deps, fields

    for index, item in enumerate(deps_node.value):
        if not isinstance(item, yaml.MappingNode):
            errors.append(ScanError(str(file_path), f"dependency #{index} is not a mapping"))
            continue
        entry = _scalar_map(item)
        name = _scalar(entry.get("name"))
        repository = _scalar(entry.get("repository"))
        version_node = entry.get("version")
        version_raw = _scalar(version_node)

        if not name or not version_raw or version_node is None:
            missing = [k for k, v in (("name", name), ("version", version_raw)) if not v]
            errors.append(
                ScanError(
                    str(file_path),
                    f"dependency #{index} at line {_line(item)} missing {', '.join(missing)}",
                )
            )
            continue

        # An empty repository means the chart is vendored under charts/.
        if not repository or repository.startswith(_LOCAL_PREFIXES):
            log.debug("extractor.local_chart", chart=name, repository=repository)
            continue

        try:
            current: Version | None = Version.coerce(version_raw)
        except VersionParseError:
            current = None

        deps.append(
            Dependency(
                identity=DependencyIdentity(
                    backend="helm-chart",
                    name=name,
                    repository=repository.rstrip("/"),
                ),
                label=name,
                current_raw=version_raw,
                current=current,
                file_path=file_path,
                line=_line(item),
                version_line=_line(version_node),
                project_root=project_root,
            )
        )
    return deps, fields


class HelmChartExtractor:
    technology = "helm"

    def detect(self, directory: Path) -> bool:
        return (directory / CHART_FILE).is_file()

    def extract(self, directory: Path, errors: list[ScanError]) -> Project:
        chart = directory / CHART_FILE
        try:
            content = chart.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            errors.append(ScanError(str(chart), f"unreadable: {exc}"))
            return Project(root=directory, technology="helm")
        deps, fields = parse_chart(content, chart, directory, errors)
        return Project(
            root=directory,
            technology="helm",
            dependencies=tuple(deps),
            chart_fields=tuple(fields),
        )


register_extractor(HelmChartExtractor())
