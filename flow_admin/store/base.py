"""The flow store contract consumed by FlowAdminService."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from flow_admin.models import (
    CredentialDefinition,
    Credentials,
    DeploymentType,
    Flow,
    FlowSet,
    NodeConfig,
)


class FlowStore(ABC):
    """Owns the flow set, its revision, credentials and the audit sink.

    Reads are synchronous snapshots of current state. Writes are coroutines
    and signal failure with ``FlowStoreError`` (validation) or
    ``FlowNotFoundError`` (unknown flow id).
    """

    @abstractmethod
    def get_flows(self) -> FlowSet: ...

    @abstractmethod
    async def reload_flows(self) -> str:
        """Re-derive the flow set from its backing source. Returns the new revision."""

    @abstractmethod
    async def set_flows(self, flows: list[NodeConfig], deployment_type: DeploymentType) -> str:
        """Replace the flow set. Returns the new revision."""

    @abstractmethod
    async def add_flow(self, flow: Flow) -> str: ...

    @abstractmethod
    def get_flow(self, flow_id: str) -> Flow | None: ...

    @abstractmethod
    async def update_flow(self, flow_id: str, flow: Flow) -> None: ...

    @abstractmethod
    async def remove_flow(self, flow_id: str) -> None: ...

    @abstractmethod
    def get_credentials(self, node_id: str) -> Credentials | None: ...

    @abstractmethod
    def get_credential_definition(self, node_type: str) -> CredentialDefinition: ...

    @abstractmethod
    def audit(self, event: dict[str, Any]) -> None: ...
