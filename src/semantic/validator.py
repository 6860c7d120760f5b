"""
Validates a BlockSpec (and optionally its Scope) before compilation.

Checks performed:
  1. At least one metric is selected
  2. Metric, dimension and sort ids are namespaced field ids ('metrics.clicks')
  3. When a scope is given, its date window is complete, parseable and ordered

Metric ids missing from the catalog are allowed: they are provider-native
fields and are treated as raw.
"""
from __future__ import annotations

import re

from src.engine.errors import InvalidSpec
from src.engine.spec import BlockSpec, Scope

_FIELD_RE = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)+$")


def validate_block(spec: BlockSpec, scope: Scope | None = None) -> list[str]:
    """Return a list of validation error messages (empty list = spec is valid)."""
    errors: list[str] = []

    if not spec.metrics:
        errors.append("At least one metric must be selected.")
        return errors  # nothing else to validate

    for metric_id in spec.metrics:
        if not _FIELD_RE.match(metric_id):
            errors.append(f"Metric '{metric_id}' is not a namespaced field id.")

    if spec.dimension and not _FIELD_RE.match(spec.dimension):
        errors.append(f"Dimension '{spec.dimension}' is not a namespaced field id.")

    if spec.sort_by and not _FIELD_RE.match(spec.sort_by):
        errors.append(f"Sort field '{spec.sort_by}' is not a namespaced field id.")

    if scope is not None:
        try:
            scope.window()
        except InvalidSpec as exc:
            errors.extend(exc.errors)

    return errors


def ensure_valid(spec: BlockSpec, scope: Scope | None = None) -> None:
    """Raise ``InvalidSpec`` carrying every validation error."""
    errors = validate_block(spec, scope)
    if errors:
        raise InvalidSpec(errors)
