"""SelectionPolicy and the terminal multi-select prompt."""

from __future__ import annotations

from collections.abc import Callable, Sequence

import click

from infrabump.bump.models import UpdateCandidate

# (label, default-checked) pairs in, confirmed indexes out.
MultiSelect = Callable[[list[tuple[str, bool]]], list[int]]


def initial_selection(candidates: Sequence[UpdateCandidate]) -> list[bool]:
    """Checkbox defaults: a lone candidate starts checked, otherwise none do."""
    return [len(candidates) == 1] * len(candidates)


def accept_defaults(items: list[tuple[str, bool]]) -> list[int]:
    """Non-interactive selection: confirm exactly the default-checked items."""
    return [i for i, (_, checked) in enumerate(items) if checked]


def _parse_toggles(answer: str, count: int) -> set[int] | None:
    toggles: set[int] = set()
    for part in answer.replace(",", " ").split():
        if "-" in part:
            lo, _, hi = part.partition("-")
            if not (lo.isdigit() and hi.isdigit()):
                return None
            toggles.update(range(int(lo), int(hi) + 1))
        elif part.isdigit():
            toggles.add(int(part))
        else:
            return None
    if any(n < 1 or n > count for n in toggles):
        return None
    return {n - 1 for n in toggles}


def prompt_multi_select(items: list[tuple[str, bool]]) -> list[int]:
    """Interactive checkbox list on the terminal.

    Numbers (``1 3``, ``2-4``) toggle items, ``a`` checks all, ``n`` clears
    all, an empty answer confirms.
    """
    checked = [default for _, default in items]
    while True:
        click.echo("Select dependencies to update:")
        for i, (label, _) in enumerate(items, start=1):
            mark = click.style("[x]", fg="green") if checked[i - 1] else "[ ]"
            click.echo(f"  {mark} {i:>2}. {label}")
        answer = click.prompt(
            "Toggle numbers, 'a' all, 'n' none, Enter to confirm",
            default="",
            show_default=False,
        ).strip()
        if not answer:
            return [i for i, c in enumerate(checked) if c]
        if answer.lower() == "a":
            checked = [True] * len(items)
            continue
        if answer.lower() == "n":
            checked = [False] * len(items)
            continue
        toggles = _parse_toggles(answer, len(items))
        if toggles is None:
            click.echo(click.style(f"Invalid selection: {answer}", fg="red"), err=True)
            continue
        for idx in toggles:
            checked[idx] = not checked[idx]
