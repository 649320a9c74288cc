"""In-process flow store with an optional JSON file as its backing source.

The flow set is a flat list of node configs. A flow is a node whose ``type``
is ``"tab"``; the nodes belonging to it carry ``z == <flow id>``. Nodes with
no ``z`` that are not tabs are global configuration nodes, exposed as the
pseudo-flow ``"global"``.

The revision is the MD5 hex digest of the canonical JSON form of the flow
list, so identical flow sets share a revision.

Usage::

    store = MemoryFlowStore.from_files(flows_file="flows.json")
    await store.reload_flows()
    service = FlowAdminService(store)
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import logging
import secrets
from pathlib import Path
from typing import Any, Iterable, Mapping

from flow_admin.audit import AuditSink, LoggingAuditSink
from flow_admin.errors import FlowNotFoundError, FlowStoreError
from flow_admin.models import (
    CredentialDefinition,
    CredentialField,
    Credentials,
    DeploymentType,
    Flow,
    FlowSet,
    NodeConfig,
)
from flow_admin.store.base import FlowStore

logger = logging.getLogger("flow_admin.store.memory")

GLOBAL_FLOW_ID = "global"
_TAB = "tab"


def compute_rev(flows: list[NodeConfig]) -> str:
    """Revision token for a flow list."""
    canonical = json.dumps(flows, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


def _new_id() -> str:
    return secrets.token_hex(8)


def _read_json(path: Path, default: Any, code: str) -> Any:
    if not path.exists():
        logger.info("%s not found; starting empty", path)
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8") or "null") or default
    except (OSError, json.JSONDecodeError) as e:
        raise FlowStoreError(f"Could not read {path}: {e}", code=code) from e


class MemoryFlowStore(FlowStore):
    """Reference FlowStore keeping state in memory.

    Writes are serialised with an asyncio.Lock; reads return deep copies.
    """

    def __init__(
        self,
        flows: list[NodeConfig] | None = None,
        *,
        source: Path | str | None = None,
        credentials: Mapping[str, Credentials] | None = None,
        credential_definitions: Mapping[str, Mapping[str, Any]] | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        self._source = Path(source) if source else None
        self._flows: list[NodeConfig] = _validate_flow_list(copy.deepcopy(flows or []))
        self._rev = compute_rev(self._flows)
        self._saved: list[NodeConfig] = copy.deepcopy(self._flows)
        self._credentials: dict[str, Credentials] = copy.deepcopy(dict(credentials or {}))
        self._definitions: dict[str, CredentialDefinition] = {}
        for node_type, definition in (credential_definitions or {}).items():
            self.register_credential_definition(node_type, definition)
        self._audit_sink: AuditSink = audit_sink or LoggingAuditSink()
        self._lock = asyncio.Lock()

    @classmethod
    def from_files(
        cls,
        flows_file: Path | str | None = None,
        credentials_file: Path | str | None = None,
        credential_definitions_file: Path | str | None = None,
        audit_sink: AuditSink | None = None,
    ) -> "MemoryFlowStore":
        """Build a store from JSON files. Missing files mean empty state."""
        flows: list[NodeConfig] = []
        if flows_file:
            flows = _read_json(Path(flows_file), [], "invalid_flows_file")
        credentials: dict[str, Credentials] = {}
        if credentials_file:
            credentials = _read_json(Path(credentials_file), {}, "invalid_credentials_file")
        definitions: dict[str, Any] = {}
        if credential_definitions_file:
            definitions = _read_json(
                Path(credential_definitions_file), {}, "invalid_credential_definitions_file"
            )
        return cls(
            flows,
            source=flows_file,
            credentials=credentials,
            credential_definitions=definitions,
            audit_sink=audit_sink,
        )

    # ------------------------------------------------------------------
    # Flow set
    # ------------------------------------------------------------------

    def get_flows(self) -> FlowSet:
        return FlowSet(rev=self._rev, flows=copy.deepcopy(self._flows))

    async def reload_flows(self) -> str:
        async with self._lock:
            if self._source is not None:
                flows = _read_json(self._source, [], "invalid_flows_file")
            else:
                flows = copy.deepcopy(self._saved)
            self._flows = _validate_flow_list(flows)
            self._rev = compute_rev(self._flows)
            logger.info("Reloaded %d node(s), rev=%s", len(self._flows), self._rev)
            return self._rev

    async def set_flows(self, flows: list[NodeConfig], deployment_type: DeploymentType) -> str:
        async with self._lock:
            new_flows = _validate_flow_list(copy.deepcopy(list(flows)))
            _check_unique_ids(new_flows)
            return self._commit(new_flows, f"deploy:{DeploymentType(deployment_type).value}")

    # ------------------------------------------------------------------
    # Individual flows
    # ------------------------------------------------------------------

    def get_flow(self, flow_id: str) -> Flow | None:
        if flow_id == GLOBAL_FLOW_ID:
            configs = [n for n in self._flows if _is_global_config(n)]
            return Flow(id=GLOBAL_FLOW_ID, configs=copy.deepcopy(configs))
        tab = self._find_tab(flow_id)
        if tab is None:
            return None
        fields = {k: v for k, v in tab.items() if k not in ("type", "nodes", "configs")}
        members = [n for n in self._flows if n.get("z") == flow_id]
        return Flow(**copy.deepcopy(fields), nodes=copy.deepcopy(members))

    async def add_flow(self, flow: Flow) -> str:
        async with self._lock:
            flow_id = flow.id or _new_id()
            existing = {n.get("id") for n in self._flows}
            if flow_id in existing or flow_id == GLOBAL_FLOW_ID:
                raise FlowStoreError(f"Duplicate flow id: {flow_id}", code="duplicate_id")

            tab, members = _flow_to_nodes(flow_id, flow)
            _check_unique_ids(members, taken=existing | {flow_id})
            self._commit([*self._flows, tab, *members], f"add:{flow_id}")
            return flow_id

    async def update_flow(self, flow_id: str, flow: Flow) -> None:
        async with self._lock:
            if flow.id is not None and flow.id != flow_id:
                raise FlowStoreError(
                    f"Flow id {flow.id!r} does not match {flow_id!r}", code="invalid_request"
                )

            if flow_id == GLOBAL_FLOW_ID:
                configs = _validate_flow_list(copy.deepcopy(list(flow.configs or [])))
                for node in configs:
                    node.setdefault("id", _new_id())
                    node.pop("z", None)
                kept = [n for n in self._flows if not _is_global_config(n)]
                _check_unique_ids(configs, taken={n.get("id") for n in kept})
                self._commit([*configs, *kept], "update:global")
                return

            if self._find_tab(flow_id) is None:
                raise FlowNotFoundError(flow_id)

            tab, members = _flow_to_nodes(flow_id, flow)
            others = [
                n for n in self._flows if n.get("id") != flow_id and n.get("z") != flow_id
            ]
            _check_unique_ids(members, taken={n.get("id") for n in others} | {flow_id})

            updated: list[NodeConfig] = []
            for node in self._flows:
                if node.get("id") == flow_id:
                    updated.append(tab)
                    updated.extend(members)
                elif node.get("z") != flow_id:
                    updated.append(node)
            self._commit(updated, f"update:{flow_id}")

    async def remove_flow(self, flow_id: str) -> None:
        async with self._lock:
            if flow_id == GLOBAL_FLOW_ID:
                raise FlowStoreError("The global flow cannot be removed", code="invalid_request")
            if self._find_tab(flow_id) is None:
                raise FlowNotFoundError(flow_id)
            remaining = [
                n for n in self._flows if n.get("id") != flow_id and n.get("z") != flow_id
            ]
            self._commit(remaining, f"remove:{flow_id}")

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def get_credentials(self, node_id: str) -> Credentials | None:
        creds = self._credentials.get(node_id)
        return copy.deepcopy(creds) if creds is not None else None

    def get_credential_definition(self, node_type: str) -> CredentialDefinition:
        return dict(self._definitions.get(node_type, {}))

    def register_credential_definition(
        self, node_type: str, definition: Mapping[str, Any]
    ) -> None:
        self._definitions[node_type] = {
            name: f if isinstance(f, CredentialField) else CredentialField.model_validate(f)
            for name, f in definition.items()
        }

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def audit(self, event: dict[str, Any]) -> None:
        try:
            self._audit_sink.audit(event)
        except Exception as e:
            logger.warning("Audit sink failed for %s: %s", event.get("event"), e)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_tab(self, flow_id: str) -> NodeConfig | None:
        for node in self._flows:
            if node.get("type") == _TAB and node.get("id") == flow_id:
                return node
        return None

    def _commit(self, flows: list[NodeConfig], reason: str) -> str:
        if self._source is not None:
            try:
                self._source.write_text(json.dumps(flows, indent=4), encoding="utf-8")
            except OSError as e:
                raise FlowStoreError(f"Could not write {self._source}: {e}", code="save_failed") from e
        self._flows = flows
        self._saved = copy.deepcopy(flows)
        self._rev = compute_rev(flows)
        logger.info("Committed %s: %d node(s), rev=%s", reason, len(flows), self._rev)
        return self._rev


def _is_global_config(node: NodeConfig) -> bool:
    return node.get("type") != _TAB and not node.get("z")


def _validate_flow_list(flows: Any) -> list[NodeConfig]:
    if not isinstance(flows, list):
        raise FlowStoreError("Flow set must be a list of node configs", code="invalid_flows")
    for node in flows:
        if not isinstance(node, dict):
            raise FlowStoreError(f"Invalid node config: {node!r}", code="invalid_flows")
    return flows


def _check_unique_ids(nodes: Iterable[NodeConfig], taken: set[Any] | None = None) -> None:
    seen = set(taken or ())
    for node in nodes:
        node_id = node.get("id")
        if node_id is None:
            continue
        if node_id in seen:
            raise FlowStoreError(f"Duplicate node id: {node_id}", code="duplicate_id")
        seen.add(node_id)


def _flow_to_nodes(flow_id: str, flow: Flow) -> tuple[NodeConfig, list[NodeConfig]]:
    """Split a Flow into its tab node and member nodes, re-parented to flow_id."""
    tab: NodeConfig = {
        k: v
        for k, v in flow.model_dump(exclude_none=True).items()
        if k not in ("nodes", "configs")
    }
    tab["id"] = flow_id
    tab["type"] = _TAB
    members: list[NodeConfig] = []
    for node in [*flow.nodes, *(flow.configs or [])]:
        if not isinstance(node, dict):
            raise FlowStoreError(f"Invalid node config: {node!r}", code="invalid_flows")
        member = copy.deepcopy(node)
        member.setdefault("id", _new_id())
        member["z"] = flow_id
        members.append(member)
    return tab, members
