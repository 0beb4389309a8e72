"""BumpOptions — immutable session configuration for the bump engine."""

from __future__ import annotations

import os
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from infrabump.exceptions import FatalError

BumpLevel = Literal["none", "patch", "minor", "major"]

DEFAULT_TERRAFORM_REGISTRY = "registry.terraform.io"


def _env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


class BumpOptions(BaseModel):
    """Options for one bump session. Frozen once built."""

    model_config = ConfigDict(frozen=True)

    recursive: bool = False
    max_depth: int = 5
    include_prereleases: bool = False
    verbose: bool = False
    no_ignore: bool = False
    max_workers: int = 8
    timeout: float = 10.0
    chart_version_bump: BumpLevel = "none"
    app_version_bump: BumpLevel = "none"
    oci_tokens: dict[str, str] = {}
    terraform_registry: str = DEFAULT_TERRAFORM_REGISTRY

    @field_validator("max_depth")
    @classmethod
    def _non_negative_depth(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_depth must be >= 0")
        return v

    @field_validator("max_workers")
    @classmethod
    def _positive_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_workers must be >= 1")
        return v

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be > 0")
        return v

    @field_validator("terraform_registry", mode="before")
    @classmethod
    def _strip_host(cls, v: str) -> str:
        return v.strip().rstrip("/") if isinstance(v, str) else v


def build_options(**overrides: Any) -> BumpOptions:
    """Build options from environment defaults plus explicit *overrides*.

    Environment:
        INFRABUMP_MAX_DEPTH   — default recursive scan depth (5)
        INFRABUMP_MAX_WORKERS — default concurrent registry requests (8)

    Raises :class:`FatalError` when the resulting configuration is invalid.
    """
    values: dict[str, Any] = {}
    try:
        values["max_depth"] = _env_int("INFRABUMP_MAX_DEPTH", 5)
        values["max_workers"] = _env_int("INFRABUMP_MAX_WORKERS", 8)
    except ValueError as exc:
        raise FatalError(f"invalid environment configuration: {exc}") from exc
    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return BumpOptions(**values)
    except ValidationError as exc:
        raise FatalError(f"invalid bump options: {exc}") from exc
