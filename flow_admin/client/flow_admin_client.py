"""Async client for the flow admin REST API using httpx."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from flow_admin.client.config import Settings

logger = logging.getLogger("flow_admin.client")


class FlowAdminClient:
    """Thin async wrapper around the flow admin REST API.

    HTTP failures are returned as ``{"error", "status", "detail"}`` dicts
    rather than raised, so callers branch on ``"error" in result``.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.api_endpoint,
            headers=settings.headers,
            timeout=httpx.Timeout(settings.timeout, connect=10.0),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> FlowAdminClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            r = await self._client.request(method, path, json=payload, headers=headers)
            r.raise_for_status()
            return r.json() if r.text.strip() else {"success": True}
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("%s %s -> %s", method, path, status)
            return {"error": f"HTTP {status}", "status": status, "detail": _detail(e.response)}
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, path, e)
            return {"error": str(e)}

    # ==================================================================
    # FLOW SET
    # ==================================================================

    async def get_flows(self) -> Any:
        """Return ``{rev, flows}``."""
        return await self._request("GET", "/flows")

    async def set_flows(
        self,
        flows: list[dict[str, Any]] | None = None,
        rev: str | None = None,
        deployment_type: str = "full",
    ) -> Any:
        """Deploy a flow set. With ``rev`` the deploy is rejected (409) if stale."""
        payload: dict[str, Any] | None = None
        if deployment_type != "reload":
            payload = {"flows": flows or []}
            if rev is not None:
                payload["rev"] = rev
        return await self._request(
            "POST", "/flows", payload, headers={"Flow-Deployment-Type": deployment_type},
        )

    async def reload_flows(self) -> Any:
        return await self.set_flows(deployment_type="reload")

    # ==================================================================
    # FLOWS
    # ==================================================================

    async def add_flow(self, flow: dict[str, Any]) -> Any:
        return await self._request("POST", "/flow", flow)

    async def get_flow(self, flow_id: str) -> Any:
        return await self._request("GET", f"/flow/{_segment(flow_id)}")

    async def update_flow(self, flow_id: str, flow: dict[str, Any]) -> Any:
        return await self._request("PUT", f"/flow/{_segment(flow_id)}", flow)

    async def delete_flow(self, flow_id: str) -> Any:
        return await self._request("DELETE", f"/flow/{_segment(flow_id)}")

    # ==================================================================
    # CREDENTIALS
    # ==================================================================

    async def get_node_credentials(self, node_type: str, node_id: str) -> Any:
        return await self._request("GET", f"/credentials/{_segment(node_type)}/{_segment(node_id)}")

    # ==================================================================
    # SYSTEM
    # ==================================================================

    async def health(self) -> Any:
        return await self._request("GET", "/health")


def _segment(value: str) -> str:
    return quote(value, safe="")


def _detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
