"""ProjectScanner — depth-bounded directory walk that yields classified projects."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from pathlib import Path

import pathspec
import structlog

# Ensure extractors are registered before any scan runs.
import infrabump.bump.extractors  # noqa: F401
from infrabump.bump.models import Project
from infrabump.bump.registry import classify
from infrabump.core.config import BumpOptions
from infrabump.exceptions import ScanError

log = structlog.get_logger("infrabump.bump")

IgnorePredicate = Callable[[Path], bool]

# Never descended: VCS metadata and Terraform's downloaded module cache.
_ALWAYS_SKIP = frozenset({".git", ".terraform"})


def _read_patterns(path: Path) -> list[str]:
    try:
        return path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError):
        return []


def global_excludes_file() -> Path:
    """Git's default ``core.excludesFile`` location."""
    base = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(base) / "git" / "ignore"


def find_repository_root(path: Path) -> Path | None:
    """Nearest directory at or above *path* that holds a ``.git`` entry."""
    for candidate in (path, *path.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def _last_match(spec: pathspec.GitIgnoreSpec, rel: str) -> bool | None:
    verdict = None
    for pattern in spec.patterns:
        if pattern.include is not None and pattern.match_file(rel) is not None:
            verdict = pattern.include
    return verdict


class GitIgnoreRules:
    """Git's ignore rules as seen from a scan rooted at *root*.

    Sources, lowest precedence first: the global excludes file, the
    repository's ``.git/info/exclude``, then each ``.gitignore`` from the
    repository top down to the directory holding the path, matched relative
    to its own directory. The last matching pattern decides, so a nested
    ``!pattern`` re-includes what an outer file ignored. Without an
    enclosing repository *root* is treated as the top.
    """

    def __init__(self, root: Path, *, global_excludes: Path | None = None) -> None:
        root = root.resolve()
        self.top = find_repository_root(root) or root
        lines = _read_patterns(global_excludes) if global_excludes is not None else []
        lines += _read_patterns(self.top / ".git" / "info" / "exclude")
        self._excludes = pathspec.GitIgnoreSpec.from_lines(lines)
        self._specs: dict[Path, pathspec.GitIgnoreSpec] = {}

    def _spec_for(self, directory: Path) -> pathspec.GitIgnoreSpec:
        spec = self._specs.get(directory)
        if spec is None:
            spec = pathspec.GitIgnoreSpec.from_lines(_read_patterns(directory / ".gitignore"))
            self._specs[directory] = spec
        return spec

    def __call__(self, path: Path) -> bool:
        path = path.resolve()
        try:
            rel = path.relative_to(self.top)
        except ValueError:
            return False
        if not rel.parts:
            return False
        suffix = "/" if path.is_dir() else ""

        verdict = _last_match(self._excludes, rel.as_posix() + suffix)
        directories = [self.top]
        for part in rel.parts[:-1]:
            directories.append(directories[-1] / part)
        for directory in directories:
            result = _last_match(
                self._spec_for(directory), path.relative_to(directory).as_posix() + suffix
            )
            if result is not None:
                verdict = result
        return bool(verdict)


def gitignore_predicate(root: Path, *, global_excludes: Path | None = None) -> IgnorePredicate:
    """Ignore predicate honouring every gitignore source that applies to *root*."""
    if global_excludes is None:
        global_excludes = global_excludes_file()
    return GitIgnoreRules(root, global_excludes=global_excludes)


def _never_ignored(path: Path) -> bool:
    return False


def _iter_dirs(
    root: Path,
    max_depth: int,
    ignore: IgnorePredicate,
    errors: list[ScanError],
) -> Iterator[Path]:
    """Pre-order walk of *root* and its subdirectories up to *max_depth* levels.

    The ignore predicate is consulted before descending, so ignored trees
    are never read.
    """
    stack: list[tuple[Path, int]] = [(root, 0)]
    while stack:
        directory, depth = stack.pop()
        yield directory
        if depth >= max_depth:
            continue
        try:
            children = sorted(p for p in directory.iterdir() if p.is_dir() and not p.is_symlink())
        except OSError as exc:
            log.warning("scanner.dir_unreadable", path=str(directory), error=str(exc))
            errors.append(ScanError(str(directory), f"unreadable directory: {exc}"))
            continue
        for child in reversed(children):
            if child.name in _ALWAYS_SKIP or ignore(child):
                log.debug("scanner.skip", path=str(child))
                continue
            stack.append((child, depth + 1))


def iter_projects(
    root: Path,
    options: BumpOptions,
    *,
    ignore: IgnorePredicate | None = None,
    errors: list[ScanError] | None = None,
) -> Iterator[Project]:
    """Lazily yield every project under *root*.

    Without ``options.recursive`` only *root* itself is classified. Scan
    problems are appended to *errors* and never stop the walk.
    """
    if errors is None:
        errors = []
    if ignore is None:
        ignore = _never_ignored if options.no_ignore else gitignore_predicate(root)

    max_depth = options.max_depth if options.recursive else 0
    for directory in _iter_dirs(root, max_depth, ignore, errors):
        extractor = classify(directory)
        if extractor is None:
            continue
        log.debug("scanner.project", path=str(directory), technology=extractor.technology)
        yield extractor.extract(directory, errors)
