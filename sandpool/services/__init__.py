"""Reference collaborators: OU mover, access granter, publishers, blueprints."""

from sandpool.services.blueprints import BlueprintDeploymentService, InMemoryBlueprintStore
from sandpool.services.identity import InMemoryIdcService
from sandpool.services.organizations import (
    InMemoryOrganizations,
    OrganizationsError,
    SandboxOuService,
    ou_ids_from_settings,
)
from sandpool.services.publishers import EventPublishError, HttpEventPublisher, InMemoryEventBus
from sandpool.services.resilience import RetryPolicy, retry_async

__all__ = [
    "BlueprintDeploymentService",
    "EventPublishError",
    "HttpEventPublisher",
    "InMemoryBlueprintStore",
    "InMemoryEventBus",
    "InMemoryIdcService",
    "InMemoryOrganizations",
    "OrganizationsError",
    "RetryPolicy",
    "SandboxOuService",
    "ou_ids_from_settings",
    "retry_async",
]
