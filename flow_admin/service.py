"""Flow administration service.

Sits between API callers and a FlowStore:

  - set_flows performs the optimistic-concurrency check. A submitted flow set
    that declares a ``rev`` is only written if that rev is still the store's
    current revision; otherwise VersionConflict (409) is raised and the store
    is not touched. ``reload`` deployments skip the check entirely.
  - Store errors are translated into the API taxonomy in flow_admin.errors.
    Store-native conventions (a numeric 404 code) never reach the caller.
  - Every operation emits an audit event through the store, and every failure
    is audited before it is raised.
  - Credentials are returned redacted (see flow_admin.redaction).

The service keeps no state between calls; construct one per store and share it.
"""

from __future__ import annotations

import logging
from typing import Any

from flow_admin.errors import (
    FlowApiError,
    NotFound,
    ValidationFailed,
    VersionConflict,
    is_not_found,
    store_error_code,
)
from flow_admin.models import (
    DeploymentRequest,
    DeploymentType,
    Flow,
    FlowSet,
    SetFlowsResult,
)
from flow_admin.redaction import redact_credentials
from flow_admin.store.base import FlowStore

logger = logging.getLogger("flow_admin.service")


class FlowAdminService:
    """Administrative operations over a FlowStore.

    ``user`` arguments identify the caller and are only copied into audit
    records.
    """

    def __init__(self, store: FlowStore) -> None:
        self._store = store

    @property
    def store(self) -> FlowStore:
        return self._store

    def _audit(self, event: str, user: Any = None, **fields: Any) -> None:
        record: dict[str, Any] = {"event": event, **fields}
        if user is not None:
            record["user"] = user
        self._store.audit(record)

    def reject(self, event: str, error: FlowApiError, user: Any = None, **fields: Any) -> FlowApiError:
        """Audit a request refused before it reached the store. Returns ``error``."""
        self._audit(event, user, **fields, error=error.code)
        return error

    # ------------------------------------------------------------------
    # Flow set
    # ------------------------------------------------------------------

    def get_flows(self, user: Any = None) -> FlowSet:
        """Return the active flow set and its revision."""
        self._audit("flows.get", user)
        return self._store.get_flows()

    async def set_flows(self, request: DeploymentRequest, user: Any = None) -> SetFlowsResult:
        """Deploy a flow set, or reload it from source.

        Raises:
            VersionConflict: the payload's ``rev`` is not the current revision.
            ValidationFailed: a non-reload deployment carried no flow set.
        """
        deployment_type = request.deployment_type
        self._audit("flows.set", user, type=deployment_type.value)

        if deployment_type is DeploymentType.RELOAD:
            path = "reload"
            write = self._store.reload_flows
            args: tuple = ()
        else:
            path = "save"
            payload = request.flows
            if payload is None:
                self._audit("flows.set", user, type=deployment_type.value, error="invalid_request")
                raise ValidationFailed(
                    "A flow set is required for this deployment type",
                    code="invalid_request",
                )
            if payload.has_rev():
                current = self._store.get_flows().rev
                if current != payload.rev:
                    logger.warning(
                        "Rejected %s deployment: rev %s is stale (current %s)",
                        deployment_type.value, payload.rev, current,
                    )
                    self._audit(
                        "flows.set", user, type=deployment_type.value, error=VersionConflict.default_code
                    )
                    raise VersionConflict("Flows have been changed since they were read")
            write = self._store.set_flows
            args = (payload.flows, deployment_type)

        try:
            rev = await write(*args)
        except Exception as e:
            logger.warning("Error %s flows: %s", "reloading" if path == "reload" else "saving", e)
            logger.debug("Flow %s failure", path, exc_info=True)
            self._audit(
                "flows.set", user, type=deployment_type.value,
                error=store_error_code(e), message=str(e),
            )
            raise
        return SetFlowsResult(rev=rev)

    # ------------------------------------------------------------------
    # Individual flows
    # ------------------------------------------------------------------

    async def add_flow(self, flow: Flow, user: Any = None) -> str:
        """Add a flow. Returns its id."""
        try:
            flow_id = await self._store.add_flow(flow)
        except Exception as e:
            code = store_error_code(e)
            self._audit("flow.add", user, error=code, message=str(e))
            raise ValidationFailed(str(e), code=code) from e
        self._audit("flow.add", user, id=flow_id)
        return flow_id

    def get_flow(self, flow_id: str, user: Any = None) -> Flow:
        flow = self._store.get_flow(flow_id)
        if flow is None:
            self._audit("flow.get", user, id=flow_id, error="not_found")
            raise NotFound()
        self._audit("flow.get", user, id=flow_id)
        return flow

    async def update_flow(self, flow_id: str, flow: Flow, user: Any = None) -> str:
        """Replace an existing flow. Returns its id."""
        try:
            await self._store.update_flow(flow_id, flow)
        except Exception as e:
            raise self._translate("flow.update", flow_id, e, user) from e
        self._audit("flow.update", user, id=flow_id)
        return flow_id

    async def delete_flow(self, flow_id: str, user: Any = None) -> None:
        try:
            await self._store.remove_flow(flow_id)
        except Exception as e:
            raise self._translate("flow.remove", flow_id, e, user) from e
        self._audit("flow.remove", user, id=flow_id)

    def _translate(self, event: str, flow_id: str, exc: Exception, user: Any):
        """Audit a store failure and return the API error to raise for it."""
        if is_not_found(exc):
            self._audit(event, user, id=flow_id, error="not_found")
            return NotFound(str(exc))
        code = store_error_code(exc)
        self._audit(event, user, id=flow_id, error=code, message=str(exc))
        return ValidationFailed(str(exc), code=code)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def get_node_credentials(self, node_type: str, node_id: str, user: Any = None) -> dict[str, Any]:
        """Return the redacted credentials of a node.

        Password fields come back as ``has_<field>`` booleans; nodes with no
        stored credentials yield ``{}``.
        """
        self._audit("credentials.get", user, type=node_type, id=node_id)
        credentials = self._store.get_credentials(node_id)
        if credentials is None:
            return {}
        definition = self._store.get_credential_definition(node_type)
        return redact_credentials(definition, credentials)
