"""HTTP client for the flow admin API."""

from flow_admin.client.config import Settings
from flow_admin.client.flow_admin_client import FlowAdminClient

__all__ = ["FlowAdminClient", "Settings"]
