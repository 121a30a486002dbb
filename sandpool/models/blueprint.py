"""Blueprints: infrastructure templates deployed into a leased account."""

from __future__ import annotations

from pydantic import BaseModel, Field

from sandpool.models.enums import ConcurrencyMode, RegionConcurrencyType


class Blueprint(BaseModel):
    blueprint_id: str
    name: str
    created_by: str | None = None
    deployment_timeout_minutes: int = 30
    region_concurrency_type: RegionConcurrencyType = RegionConcurrencyType.SEQUENTIAL


class StackSet(BaseModel):
    stack_set_id: str
    regions: list[str] = Field(default_factory=list)
    max_concurrent_percentage: int = 100
    failure_tolerance_percentage: int = 0
    concurrency_mode: ConcurrencyMode = ConcurrencyMode.STRICT_FAILURE_TOLERANCE


class BlueprintWithStackSets(BaseModel):
    blueprint: Blueprint
    stack_sets: list[StackSet] = Field(default_factory=list)
