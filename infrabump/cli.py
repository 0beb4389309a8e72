"""CLI entry point: infrabump.

Subcommands:
    infrabump bump ./terraform                 # check one project, pick updates
    infrabump bump -r ./infra                  # every project below ./infra
    infrabump bump -r ./infra --dry-run --json # report only, machine readable
"""

from __future__ import annotations

import json
import sys
from collections import Counter

import click

from infrabump import __version__
from infrabump.bump.engine import bump as run_bump
from infrabump.bump.models import BumpReport
from infrabump.bump.selection import accept_defaults, prompt_multi_select
from infrabump.core.config import build_options
from infrabump.core.logging import setup_logging
from infrabump.exceptions import FatalError

_LEVELS = click.Choice(["patch", "minor", "major"])


def _parse_oci_tokens(values: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated ``HOST=TOKEN`` flags."""
    tokens: dict[str, str] = {}
    for value in values:
        host, sep, token = value.partition("=")
        if not sep or not host or not token:
            raise click.BadParameter(
                f"expected HOST=TOKEN, got {value!r}", param_hint="--oci-token"
            )
        tokens[host.strip()] = token.strip()
    return tokens


def _info(message: str) -> None:
    click.echo(f"{click.style('INFO:', fg='cyan')} {message}")


def _render_resolution(report: BumpReport) -> None:
    """Per-dependency status lines, printed before the selection prompt."""
    by_tech = Counter(p.technology for p in report.projects)
    _info(
        f"Found {by_tech['terraform']} Terraform project(s), {by_tech['helm']} Helm project(s)"
    )
    for error in report.scan_errors:
        click.echo(f"  {click.style('!', fg='yellow')} {error}", err=True)

    for dep in report.up_to_date:
        click.echo(
            f"  {click.style('✓', fg='green')} {click.style(dep.label, fg='cyan')} "
            f"{dep.current_raw} ({dep.location}) - already up to date"
        )
    for c in report.candidates:
        dep = c.dependency
        app = f" [app {c.app_version}]" if c.app_version else ""
        click.echo(
            f"  {click.style('↑', fg='yellow')} {click.style(dep.label, fg='cyan')} "
            f"{c.delta}{app} ({dep.location}) - update available"
        )
    for failure in report.fetch_failures:
        dep = failure.dependency
        click.echo(
            f"  {click.style('✗', fg='red')} {click.style(dep.label, fg='cyan')} "
            f"({dep.location}) - could not check: {failure.error.reason}"
        )
    for dep in report.unversioned:
        shown = dep.current_raw if dep.current_raw is not None else "no version"
        click.echo(
            f"  {click.style('-', dim=True)} {click.style(dep.label, fg='cyan')} "
            f"({dep.location}) - skipped: {shown}"
        )

    if not report.projects:
        _info("No Terraform or Helm projects found")
    elif report.candidates:
        _info(f"Found {len(report.candidates)} dependencies with updates available\n")
    elif not report.fetch_failures:
        click.echo(f"{click.style('SUCCESS:', fg='green')} All dependencies are up to date!")


def _render_apply(report: BumpReport) -> None:
    if not report.selected:
        if report.candidates:
            _info("No dependencies selected")
        return
    for c in report.applied:
        dep = c.dependency
        click.echo(
            f"  {click.style('✓', fg='green')} Updated {click.style(dep.label, fg='cyan')} "
            f"{c.delta} in {dep.file_path}"
        )
    for u in report.chart_updates:
        click.echo(
            f"  {click.style('✓', fg='green')} Bumped chart {u.field.name} {u.delta} "
            f"in {u.field.file_path}"
        )
    for failure in report.apply_errors:
        click.echo(f"  {click.style('✗', fg='red')} {failure.error}", err=True)

    if report.interrupted:
        click.echo(
            click.style("Interrupted: updates were partially applied.", fg="yellow"), err=True
        )
    click.echo(
        f"\n{click.style('SUCCESS:', fg='green')} {len(report.applied)} dependencies updated "
        f"across {len(report.touched_projects)} project(s)"
        + (f", {report.failed_count} failed" if report.failed_count else "")
    )


def _report_json(report: BumpReport) -> dict:
    def dep_row(dep) -> dict:
        return {
            "name": dep.label,
            "source": dep.identity.source,
            "current": dep.current_raw,
            "file": str(dep.file_path),
            "line": dep.line,
        }

    return {
        "root": str(report.root),
        "projects": [
            {"path": str(p.root), "technology": p.technology, "dependencies": len(p.dependencies)}
            for p in report.projects
        ],
        "updates": [
            {
                **dep_row(c.dependency),
                "latest": c.new_version.original,
                "delta": c.delta,
                "app_version": c.app_version,
            }
            for c in report.candidates
        ],
        "up_to_date": [dep_row(d) for d in report.up_to_date],
        "could_not_check": [
            {**dep_row(f.dependency), "error": f.error.reason} for f in report.fetch_failures
        ],
        "unversioned": [dep_row(d) for d in report.unversioned],
        "scan_errors": [str(e) for e in report.scan_errors],
        "applied": [dep_row(c.dependency) for c in report.applied],
        "apply_errors": [str(f.error) for f in report.apply_errors],
    }


@click.group()
@click.version_option(__version__, prog_name="infrabump")
def main() -> None:
    """infrabump: keep Terraform modules and Helm charts up to date."""


@main.command("bump")
@click.argument("project_path", type=click.Path(file_okay=False))
@click.option("-r", "--recursive", is_flag=True, help="Scan subdirectories for projects")
@click.option("--max-depth", type=int, default=None, help="Recursive scan depth (default: 5)")
@click.option("--include-prereleases", is_flag=True, help="Consider alpha/beta/rc versions")
@click.option("--no-ignore", is_flag=True, help="Do not skip paths matched by .gitignore")
@click.option("--dry-run", is_flag=True, help="Report available updates without writing")
@click.option("-y", "--yes", is_flag=True, help="Apply the default selection without prompting")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.option("--bump-chart-version", type=_LEVELS, default=None,
              help="Also bump the chart's own version when its dependencies change")
@click.option("--bump-app-version", type=_LEVELS, default=None,
              help="Also bump the chart's appVersion when its dependencies change")
@click.option("--oci-token", "oci_tokens", multiple=True, metavar="HOST=TOKEN",
              help="Bearer token for a private OCI registry (repeatable)")
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
def bump_command(
    project_path: str,
    recursive: bool,
    max_depth: int | None,
    include_prereleases: bool,
    no_ignore: bool,
    dry_run: bool,
    yes: bool,
    as_json: bool,
    bump_chart_version: str | None,
    bump_app_version: str | None,
    oci_tokens: tuple[str, ...],
    verbose: bool,
) -> None:
    """Check PROJECT_PATH for newer module and chart versions and apply them."""
    setup_logging(verbose)
    try:
        options = build_options(
            recursive=recursive,
            max_depth=max_depth,
            include_prereleases=include_prereleases,
            verbose=verbose,
            no_ignore=no_ignore,
            chart_version_bump=bump_chart_version,
            app_version_bump=bump_app_version,
            oci_tokens=_parse_oci_tokens(oci_tokens),
        )
    except FatalError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not as_json:
        if recursive:
            _info(f"Scanning recursively (max depth: {options.max_depth}): {project_path}")
        else:
            _info(f"Scanning for dependencies in: {project_path}")

    try:
        report = run_bump(
            project_path,
            options,
            select=accept_defaults if yes else prompt_multi_select,
            # JSON output never prompts: without --yes it only reports.
            dry_run=dry_run or (as_json and not yes),
            on_resolved=None if as_json else _render_resolution,
        )
    except FatalError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(_report_json(report), indent=2))
    else:
        _render_apply(report)

    if report.apply_errors or report.interrupted:
        sys.exit(1)


if __name__ == "__main__":
    main()
