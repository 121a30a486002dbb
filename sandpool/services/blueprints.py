"""Blueprint storage and deployment bookkeeping."""

from __future__ import annotations

from collections import defaultdict

from sandpool.errors import BlueprintValidationError
from sandpool.interfaces import BlueprintStore
from sandpool.logging import get_logger, searchable_lease_properties
from sandpool.models import BlueprintWithStackSets, Lease

logger = get_logger(__name__)


class InMemoryBlueprintStore:
    def __init__(self) -> None:
        self._blueprints: dict[str, BlueprintWithStackSets] = {}
        # blueprint_id -> account ids with a recorded stack instance
        self._stack_instances: dict[str, set[str]] = defaultdict(set)

    def add(self, blueprint: BlueprintWithStackSets) -> None:
        self._blueprints[blueprint.blueprint.blueprint_id] = blueprint

    async def get(self, blueprint_id: str) -> BlueprintWithStackSets | None:
        return self._blueprints.get(blueprint_id)

    def record_stack_instance(self, blueprint_id: str, account_id: str) -> None:
        self._stack_instances[blueprint_id].add(account_id)

    def stack_instances(self, blueprint_id: str) -> set[str]:
        return set(self._stack_instances.get(blueprint_id, set()))

    async def delete_stack_instances(self, blueprint_id: str, account_id: str) -> int:
        instances = self._stack_instances.get(blueprint_id, set())
        if account_id not in instances:
            return 0
        instances.discard(account_id)
        return 1


class BlueprintDeploymentService:
    """Validates blueprints before deployment and cleans up after failures."""

    def __init__(self, blueprint_store: BlueprintStore) -> None:
        self.blueprint_store = blueprint_store

    async def validate_blueprint_for_deployment(self, blueprint_id: str) -> BlueprintWithStackSets:
        """Load a blueprint that can be deployed.

        Raises:
            BlueprintValidationError: If the blueprint does not exist or has no stack sets.
        """
        blueprint = await self.blueprint_store.get(blueprint_id)
        if blueprint is None:
            raise BlueprintValidationError(f"Blueprint {blueprint_id} not found")
        if not blueprint.stack_sets:
            raise BlueprintValidationError(f"Blueprint {blueprint_id} has no stack sets")
        return blueprint

    async def delete_stack_instances_metadata(self, lease: Lease) -> None:
        """Drop recorded stack instances for the lease's account; never raises."""
        if not lease.blueprint_id or not lease.aws_account_id:
            return
        try:
            deleted = await self.blueprint_store.delete_stack_instances(
                lease.blueprint_id, lease.aws_account_id
            )
        except Exception as e:
            logger.warning(
                "stack_instance_metadata_cleanup_failed",
                blueprint_id=lease.blueprint_id,
                error=str(e),
                **searchable_lease_properties(lease),
            )
            return
        logger.info(
            "stack_instance_metadata_deleted",
            blueprint_id=lease.blueprint_id,
            deleted=deleted,
            **searchable_lease_properties(lease),
        )
