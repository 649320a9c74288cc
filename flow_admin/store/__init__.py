"""Flow store contract and the reference in-memory implementation."""

from flow_admin.store.base import FlowStore
from flow_admin.store.memory import GLOBAL_FLOW_ID, MemoryFlowStore, compute_rev

__all__ = ["FlowStore", "MemoryFlowStore", "GLOBAL_FLOW_ID", "compute_rev"]
