"""Dependency bump engine — find and apply newer module and chart versions."""

from infrabump.bump.engine import bump, scan_and_resolve
from infrabump.bump.models import BumpReport, Dependency, Project, UpdateCandidate

__all__ = ["BumpReport", "Dependency", "Project", "UpdateCandidate", "bump", "scan_and_resolve"]
