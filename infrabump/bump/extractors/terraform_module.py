"""Extractor for Terraform ``module`` blocks with registry sources."""

from __future__ import annotations

import re
from collections.abc import Iterator
from pathlib import Path

import structlog

from infrabump.bump.models import Dependency, DependencyIdentity, Project
from infrabump.bump.registry import register_extractor
from infrabump.bump.version import Version
from infrabump.exceptions import ScanError, VersionParseError

log = structlog.get_logger("infrabump.bump")

_MODULE_HEADER_RE = re.compile(r'^[ \t]*module[ \t]+"([^"]+)"[ \t]*\{', re.MULTILINE)
_SOURCE_RE = re.compile(r'^[ \t]*source[ \t]*=[ \t]*"([^"]*)"', re.MULTILINE)
_VERSION_RE = re.compile(r'^[ \t]*version[ \t]*=[ \t]*"([^"]*)"', re.MULTILINE)
_HEREDOC_RE = re.compile(r"<<-?[ \t]*([A-Za-z_][A-Za-z0-9_]*)[ \t]*\r?\n")

# [<host>/]<namespace>/<name>/<provider>[//<submodule>]
REGISTRY_SOURCE_RE = re.compile(
    r"^(?:(?P<host>[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)+(?::\d+)?)/)?"
    r"(?P<namespace>[A-Za-z0-9][A-Za-z0-9_-]*)/"
    r"(?P<name>[A-Za-z0-9][A-Za-z0-9_-]*)/"
    r"(?P<provider>[a-z0-9]+)"
    r"(?://(?P<submodule>[^?]+))?$"
)


def parse_registry_source(source: str) -> DependencyIdentity | None:
    """Map a module ``source`` to a registry identity.

    Returns None for local paths, git/http/s3 sources and anything else that
    has no module registry behind it.
    """
    if "::" in source or source.startswith((".", "/")):
        return None
    m = REGISTRY_SOURCE_RE.match(source.strip())
    if m is None:
        return None
    return DependencyIdentity(
        backend="terraform-module",
        namespace=m.group("namespace"),
        name=m.group("name"),
        provider=m.group("provider"),
        host=m.group("host"),
        submodule=m.group("submodule"),
    )


def _structural(text: str, start: int) -> Iterator[tuple[int, str]]:
    """Yield ``(index, char)`` for braces outside strings, comments and heredocs."""
    i = start
    n = len(text)
    while i < n:
        c = text[i]
        if c == '"':
            i += 1
            while i < n and text[i] != '"':
                i += 2 if text[i] == "\\" else 1
        elif c == "#" or text.startswith("//", i):
            nl = text.find("\n", i)
            i = n if nl == -1 else nl
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 1
        elif text.startswith("<<", i):
            m = _HEREDOC_RE.match(text, i)
            if m:
                closing = re.compile(rf"^[ \t]*{m.group(1)}[ \t]*\r?$", re.MULTILINE)
                end = closing.search(text, m.end())
                i = n if end is None else end.end()
                continue
        elif c in "{}":
            yield i, c
        i += 1


def _block_end(text: str, open_brace: int) -> int | None:
    """Index of the brace closing the block opened at *open_brace*."""
    depth = 0
    for i, c in _structural(text, open_brace):
        depth += 1 if c == "{" else -1
        if depth == 0:
            return i
    return None


def _top_level(body: str, pattern: re.Pattern[str]) -> re.Match[str] | None:
    """First match of *pattern* not nested inside a sub-block or map of *body*."""
    for m in pattern.finditer(body):
        depth = 0
        for _, c in _structural(body[: m.start()], 0):
            depth += 1 if c == "{" else -1
        if depth == 0:
            return m
    return None


def _line_of(text: str, index: int) -> int:
    return text.count("\n", 0, index) + 1


def parse_modules(
    content: str, file_path: Path, project_root: Path, errors: list[ScanError]
) -> list[Dependency]:
    """Extract registry-module dependencies from one ``.tf`` file's content."""
    deps: list[Dependency] = []
    for header in _MODULE_HEADER_RE.finditer(content):
        label = header.group(1)
        open_brace = header.end() - 1
        close = _block_end(content, open_brace)
        if close is None:
            errors.append(ScanError(str(file_path), f"unterminated module block {label!r}"))
            continue
        body_start = open_brace + 1
        body = content[body_start:close]

        source_m = _top_level(body, _SOURCE_RE)
        if source_m is None:
            continue
        identity = parse_registry_source(source_m.group(1))
        if identity is None:
            log.debug("extractor.non_registry_source", module=label, source=source_m.group(1))
            continue

        version_m = _top_level(body, _VERSION_RE)
        current_raw: str | None = None
        current: Version | None = None
        version_line: int | None = None
        if version_m is not None:
            current_raw = version_m.group(1)
            version_line = _line_of(content, body_start + version_m.start(1))
            try:
                current = Version.coerce(current_raw)
            except VersionParseError:
                current = None

        deps.append(
            Dependency(
                identity=identity,
                label=label,
                current_raw=current_raw,
                current=current,
                file_path=file_path,
                line=_line_of(content, header.start(1)),
                version_line=version_line,
                project_root=project_root,
            )
        )
    return deps


def _tf_files(directory: Path) -> list[Path]:
    return sorted(p for p in directory.glob("*.tf") if p.is_file())


class TerraformModuleExtractor:
    technology = "terraform"

    def detect(self, directory: Path) -> bool:
        if directory.name != "terraform" and not (directory / "tfvars").is_dir():
            return False
        for tf in _tf_files(directory):
            try:
                if _MODULE_HEADER_RE.search(tf.read_text(encoding="utf-8")):
                    return True
            except (OSError, UnicodeDecodeError):
                continue
        return False

    def extract(self, directory: Path, errors: list[ScanError]) -> Project:
        deps: list[Dependency] = []
        for tf in _tf_files(directory):
            try:
                content = tf.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                errors.append(ScanError(str(tf), f"unreadable: {exc}"))
                continue
            deps.extend(parse_modules(content, tf, directory, errors))
        return Project(root=directory, technology="terraform", dependencies=tuple(deps))


register_extractor(TerraformModuleExtractor())
