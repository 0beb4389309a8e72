"""Updater — splice new version tokens into declaration files in place.

Only the version token on the recorded line is replaced; every other byte
of the file, line endings included, is written back unchanged.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from infrabump.bump.models import (
    ApplyFailure,
    ChartFieldUpdate,
    UpdateCandidate,
)
from infrabump.bump.version import Version
from infrabump.exceptions import ApplyError

log = structlog.get_logger("infrabump.bump")

_CONSTRAINT_PREFIX_RE = re.compile(r"^(\s*(?:~>|>=|<=|!=|==|=|>|<|\^|~)?\s*)(v?)\d")


def rewrite_constraint(old: str, new: Version) -> str:
    """Carry the operator of *old* over to *new*.

    ``~> 8.2.0`` becomes ``~> 8.3.2``; a leading ``v`` is kept. Anything
    after the first version in *old* (upper bounds, extra clauses) is
    dropped, since it was written for the old version.
    """
    m = _CONSTRAINT_PREFIX_RE.match(old)
    if m is None:
        return new.original
    prefix, v = m.groups()
    text = new.original
    if not text.startswith("v"):
        text = v + text
    return prefix + text


def _hcl_pattern(old: str) -> re.Pattern[str]:
    return re.compile(rf'(\bversion[ \t]*=[ \t]*)(")({re.escape(old)})(")')


def _yaml_pattern(key: str, old: str) -> re.Pattern[str]:
    return re.compile(
        rf"((?:^|[ \t{{,]|-[ \t]){re.escape(key)}[ \t]*:[ \t]*)(['\"]?)({re.escape(old)})(\2)"
        r"(?=[ \t]*(?:#|,|\}|$))"
    )


@dataclass
class _Edit:
    target: UpdateCandidate | ChartFieldUpdate
    line: int | None
    pattern: re.Pattern[str] | None
    new_token: str


@dataclass
class ApplyOutcome:
    applied: list[UpdateCandidate] = field(default_factory=list)
    chart_updates: list[ChartFieldUpdate] = field(default_factory=list)
    failures: list[ApplyFailure] = field(default_factory=list)


def _edit_for_candidate(candidate: UpdateCandidate) -> _Edit:
    dep = candidate.dependency
    old = dep.current_raw or ""
    new_token = rewrite_constraint(old, candidate.new_version)
    if dep.identity.backend == "terraform-module":
        pattern = _hcl_pattern(old)
    else:
        pattern = _yaml_pattern("version", old)
    return _Edit(candidate, dep.version_line, pattern if old else None, new_token)


def _edit_for_chart_field(update: ChartFieldUpdate) -> _Edit:
    f = update.field
    return _Edit(update, f.line, _yaml_pattern(f.name, f.raw), update.new_version.original)


def _split_lines(text: str) -> list[str]:
    """Split on LF only, keeping line endings, so numbering matches the scan."""
    parts = text.split("\n")
    lines = [p + "\n" for p in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _splice(lines: list[str], edit: _Edit, file_path: Path) -> None:
    """Replace the version token on the edit's line, raising ApplyError if absent."""
    if edit.line is None or edit.pattern is None:
        raise ApplyError(str(file_path), edit.line or 0, "no version token recorded")
    if not 1 <= edit.line <= len(lines):
        raise ApplyError(str(file_path), edit.line, "line no longer exists")
    raw = lines[edit.line - 1]
    body = raw.rstrip("\r\n")
    eol = raw[len(body) :]
    m = edit.pattern.search(body)
    if m is None:
        raise ApplyError(str(file_path), edit.line, "expected version token not found")
    new_body = body[: m.start(3)] + edit.new_token + body[m.end(3) :]
    lines[edit.line - 1] = new_body + eol


def apply_updates(
    candidates: Iterable[UpdateCandidate],
    chart_updates: Iterable[ChartFieldUpdate] = (),
    outcome: ApplyOutcome | None = None,
) -> ApplyOutcome:
    """Apply confirmed updates, one read and at most one write per file.

    A token that cannot be found is recorded as a failure for that update
    only; the rest of the file's edits still go through. Results are
    recorded into *outcome* file by file, so an interrupted run still
    reports what was written.
    """
    edits: dict[Path, list[_Edit]] = defaultdict(list)
    for candidate in candidates:
        edits[candidate.dependency.file_path].append(_edit_for_candidate(candidate))
    for update in chart_updates:
        edits[update.field.file_path].append(_edit_for_chart_field(update))

    if outcome is None:
        outcome = ApplyOutcome()
    for file_path, file_edits in edits.items():
        try:
            with open(file_path, encoding="utf-8", newline="") as fh:
                lines = _split_lines(fh.read())
        except (OSError, UnicodeDecodeError) as exc:
            for edit in file_edits:
                outcome.failures.append(
                    ApplyFailure(edit.target, ApplyError(str(file_path), 0, f"unreadable: {exc}"))
                )
            continue

        done: list[_Edit] = []
        for edit in file_edits:
            try:
                _splice(lines, edit, file_path)
            except ApplyError as exc:
                log.warning("updater.token_missing", file=str(file_path), line=exc.line)
                outcome.failures.append(ApplyFailure(edit.target, exc))
                continue
            done.append(edit)

        if not done:
            continue
        try:
            with open(file_path, "w", encoding="utf-8", newline="") as fh:
                fh.write("".join(lines))
        except OSError as exc:
            for edit in done:
                outcome.failures.append(
                    ApplyFailure(edit.target, ApplyError(str(file_path), 0, f"unwritable: {exc}"))
                )
            continue

        for edit in done:
            log.info("updater.applied", file=str(file_path), line=edit.line, token=edit.new_token)
            if isinstance(edit.target, UpdateCandidate):
                outcome.applied.append(edit.target)
            else:
                outcome.chart_updates.append(edit.target)
    return outcome
