"""Dependency extractors — auto-registered on import.

Helm is registered first: a directory with a ``Chart.yaml`` is a chart even
if it also carries ``.tf`` files.
"""

from infrabump.bump.extractors import (
    helm_chart,  # noqa: F401
    terraform_module,  # noqa: F401
)
