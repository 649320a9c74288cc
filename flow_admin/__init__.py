"""Flow administration API: flow set deployment with optimistic concurrency
and credential redaction."""

from flow_admin.service import FlowAdminService

__all__ = ["FlowAdminService"]
