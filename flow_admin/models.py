"""Data model for the flow administration API.

Node configurations are opaque ``dict`` values: nothing in this package
interprets them beyond the ``id``/``type``/``z`` keys the reference store uses
to group nodes into flows.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

NodeConfig = dict[str, Any]
Credentials = dict[str, Any]


class DeploymentType(str, Enum):
    """How a submitted flow set should be applied."""

    FULL = "full"
    NODES = "nodes"
    FLOWS = "flows"
    RELOAD = "reload"


class FlowSet(BaseModel):
    """The entire deployed configuration plus its revision."""

    rev: str | None = Field(
        None,
        description=(
            "Revision the flow set was read at. When present on a write, the "
            "write is rejected if the store has moved on since."
        ),
    )
    flows: list[NodeConfig] = Field(default_factory=list)

    def has_rev(self) -> bool:
        """True when the caller declared a revision (even an empty one)."""
        return "rev" in self.model_fields_set


class Flow(BaseModel):
    """One named sub-graph within the flow set."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    label: str = ""
    nodes: list[NodeConfig] = Field(default_factory=list)
    configs: list[NodeConfig] | None = None
    disabled: bool | None = None
    info: str | None = None


class DeploymentRequest(BaseModel):
    """A set_flows request: the deployment type and, unless reloading, the flows."""

    deployment_type: DeploymentType = DeploymentType.FULL
    flows: FlowSet | None = None


class SetFlowsResult(BaseModel):
    rev: str


class CredentialField(BaseModel):
    """How one credential field is exposed on read."""

    model_config = ConfigDict(extra="allow")

    type: str = "text"

    @property
    def is_password(self) -> bool:
        return self.type == "password"


CredentialDefinition = dict[str, CredentialField]
