"""Pydantic models for batch plan files.

A plan captures every choice the interactive setup would otherwise ask for,
so a batch can be reviewed in version control and replayed:

    operation: cpu-v2-to-v3
    snapshotPolicy: replace
    vmids: [101, 102]
    dryRun: true
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import MAX_DISPLAY_MEMORY_MB, MIN_DISPLAY_MEMORY_MB
from .decision import Operation, OperationKind
from .orchestrator import BatchOptions
from .snapshots import SnapshotPolicy


class BatchPlan(BaseModel):
    """A complete, validated batch request."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    operation: OperationKind
    machine_version: str | None = Field(None, alias="machineVersion")
    memory_mb: int | None = Field(None, alias="memoryMb")
    snapshot_policy: SnapshotPolicy = Field(SnapshotPolicy.DO_NOTHING, alias="snapshotPolicy")
    vmids: list[int] = Field(default_factory=list)
    dry_run: bool = Field(False, alias="dryRun")
    confirm_each: bool = Field(False, alias="confirmEach")

    @field_validator("memory_mb")
    @classmethod
    def validate_memory(cls, v: int | None) -> int | None:
        if v is not None and not (MIN_DISPLAY_MEMORY_MB <= v <= MAX_DISPLAY_MEMORY_MB):
            raise ValueError(
                f"memoryMb must be between {MIN_DISPLAY_MEMORY_MB} and {MAX_DISPLAY_MEMORY_MB}"
            )
        return v

    @field_validator("vmids")
    @classmethod
    def validate_vmids(cls, v: list[int]) -> list[int]:
        invalid = [vmid for vmid in v if vmid < 1]
        if invalid:
            raise ValueError(f"vmids must be positive integers: {invalid}")
        return sorted(set(v))

    @model_validator(mode="after")
    def validate_operation_details(self) -> BatchPlan:
        # Operation enforces the cross-field rules; surface them as validation errors
        self.to_operation()
        return self

    def to_operation(self) -> Operation:
        return Operation(
            kind=self.operation,
            machine_version=self.machine_version,
            memory_mb=self.memory_mb,
        )

    def to_options(self) -> BatchOptions:
        """Immutable options handed to the orchestrator."""
        return BatchOptions(
            operation=self.to_operation(),
            snapshot_policy=self.snapshot_policy,
            dry_run=self.dry_run,
            confirm_each=self.confirm_each,
        )
