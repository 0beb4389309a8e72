"""Extractor registry — classify directories and match them to extractors."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from infrabump.bump.models import Project, Technology
from infrabump.exceptions import ScanError


@runtime_checkable
class DependencyExtractor(Protocol):
    """Interface that every technology extractor must satisfy."""

    technology: Technology

    def detect(self, directory: Path) -> bool: ...

    def extract(self, directory: Path, errors: list[ScanError]) -> Project: ...


EXTRACTOR_REGISTRY: dict[str, DependencyExtractor] = {}


def register_extractor(extractor: DependencyExtractor) -> None:
    """Register an extractor instance by its technology."""
    EXTRACTOR_REGISTRY[extractor.technology] = extractor


def classify(directory: Path) -> DependencyExtractor | None:
    """Return the first registered extractor that recognises *directory*.

    Extractors are tried in registration order, so a directory yields at
    most one project.
    """
    for extractor in EXTRACTOR_REGISTRY.values():
        if extractor.detect(directory):
            return extractor
    return None
