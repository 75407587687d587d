"""Batch plan loading with validation.

File size is checked before reading; all validation happens at this boundary
so the orchestrator only ever sees a well-formed BatchPlan.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_PLAN_FILE_SIZE_BYTES
from .models import BatchPlan

logger = logging.getLogger(__name__)


class PlanLoadError(Exception):
    """Raised when plan loading or validation fails."""

    pass


def load_plan(plan_path: Path) -> BatchPlan:
    """Load and validate a batch plan from YAML.

    Both a flat mapping and a ``kind``/``spec`` wrapper are accepted.

    Raises:
        PlanLoadError: If the plan cannot be loaded or fails validation.
    """
    if not plan_path.exists():
        raise PlanLoadError(f"Plan file not found: {plan_path}")

    try:
        file_size = plan_path.stat().st_size
    except OSError as e:
        raise PlanLoadError(f"Failed to stat plan file {plan_path}: {e}") from e

    if file_size > MAX_PLAN_FILE_SIZE_BYTES:
        raise PlanLoadError(
            f"Plan file exceeds maximum size of {MAX_PLAN_FILE_SIZE_BYTES} bytes: {plan_path}"
        )

    try:
        content = plan_path.read_text(encoding="utf-8")
    except OSError as e:
        raise PlanLoadError(f"Failed to read plan file {plan_path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise PlanLoadError(f"Invalid YAML in {plan_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise PlanLoadError(f"Plan file must contain a YAML mapping: {plan_path}")

    if "kind" in raw_data and "spec" in raw_data:
        plan_data = raw_data.get("spec", {})
        if not isinstance(plan_data, dict):
            raise PlanLoadError(f"Spec section must be a mapping: {plan_path}")
    else:
        plan_data = raw_data

    try:
        plan = BatchPlan.model_validate(plan_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"]) or "plan"
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise PlanLoadError(f"Validation failed for {plan_path}:\n{error_list}") from e

    logger.info(
        "Loaded batch plan from %s",
        plan_path,
        extra={"operation": plan.operation.value, "vm_count": len(plan.vmids)},
    )
    return plan
