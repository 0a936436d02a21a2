"""Outbound Azure DevOps work item client."""
from __future__ import annotations

import base64
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from ticketsync.core.config import Settings, get_settings
from ticketsync.core.logging import log_error, log_info
from ticketsync.services.field_mapping import (
    priority_to_tracker,
    status_to_tracker,
    type_to_tracker,
)

JSON_PATCH = "application/json-patch+json"


class TrackerConfigurationError(RuntimeError):
    """Raised when Azure DevOps integration settings are incomplete."""


class TrackerAPIError(RuntimeError):
    """Raised when Azure DevOps responds with an error status or is unreachable."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_identity(user: Mapping[str, Any]) -> str:
    return f"{user['username']}<{user['email']}>"


def format_comment(author_name: str, author_email: str, message: str) -> str:
    return f"<b>{author_name} <{author_email}>:</b> {message}"


def _add(field: str, value: Any) -> dict[str, Any]:
    return {"op": "add", "path": f"/fields/{field}", "value": value}


class AzureDevOpsClient:
    """Create, update and delete Azure DevOps work items that mirror tickets."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def is_configured(self) -> bool:
        return bool(self._settings.azure_devops_base_url and self._settings.azure_devops_pat)

    def _base_url(self) -> str:
        if not self.is_configured():
            raise TrackerConfigurationError("Azure DevOps base URL or access token is not configured")
        return str(self._settings.azure_devops_base_url).rstrip("/")

    def _headers(self, content_type: str | None) -> dict[str, str]:
        token = base64.b64encode(f":{self._settings.azure_devops_pat}".encode()).decode()
        headers = {"Authorization": f"Basic {token}", "Accept": "application/json"}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        content: bytes | None = None,
        content_type: str | None = None,
    ) -> Any:
        url = f"{self._base_url()}{path}"
        query = {"api-version": self._settings.azure_devops_api_version}
        query.update(params or {})
        log_info("Calling Azure DevOps API", url=url, method=method)
        async with httpx.AsyncClient(timeout=self._settings.azure_devops_timeout) as client:
            try:
                response = await client.request(
                    method,
                    url,
                    params=query,
                    headers=self._headers(content_type),
                    json=json,
                    content=content,
                )
            except httpx.HTTPError as exc:
                log_error("Azure DevOps request failed", url=url, error=str(exc))
                raise TrackerAPIError(str(exc)) from exc
        if response.status_code >= 400:
            log_error(
                "Azure DevOps returned an error",
                url=url,
                status=response.status_code,
                body=response.text[:500],
            )
            raise TrackerAPIError(
                f"Azure DevOps responded with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code == httpx.codes.NO_CONTENT or not response.content:
            return None
        return response.json()

    async def _patch_work_item(self, work_item_id: int, operations: list[dict[str, Any]]) -> Any:
        return await self._request(
            "PATCH",
            f"/_apis/wit/workitems/{work_item_id}",
            json=operations,
            content_type=JSON_PATCH,
        )

    async def create_work_item(
        self,
        ticket: Mapping[str, Any],
        *,
        project: str,
        operator: Mapping[str, Any] | None = None,
    ) -> int:
        """Create the work item for ``ticket`` and return its identifier.

        The assignee can only be set after the item exists, so an operator
        costs a second request.
        """
        work_item_type = type_to_tracker(ticket["ticket_type"])
        operations = [
            _add("System.Title", ticket["title"]),
            _add("System.Description", ticket.get("description") or ""),
            _add("Microsoft.VSTS.Common.Priority", priority_to_tracker(ticket["priority"])),
            _add("System.State", "To Do"),
        ]
        created = await self._request(
            "POST",
            f"/{quote(project)}/_apis/wit/workitems/${quote(work_item_type)}",
            json=operations,
            content_type=JSON_PATCH,
        )
        try:
            work_item_id = int(created["id"])
        except (TypeError, KeyError, ValueError):
            raise TrackerAPIError("Azure DevOps did not return a work item id") from None
        if operator:
            await self._patch_work_item(
                work_item_id, [_add("System.AssignedTo", format_identity(operator))]
            )
        log_info("Work item created", work_item_id=work_item_id, ticket_id=ticket.get("id"))
        return work_item_id

    async def update_work_item(self, ticket: Mapping[str, Any], *, project: str) -> None:
        operations = [
            _add("System.Title", ticket["title"]),
            _add("System.Description", ticket.get("description") or ""),
            _add("Microsoft.VSTS.Common.Priority", priority_to_tracker(ticket["priority"])),
            _add("System.State", status_to_tracker(ticket["status"])),
            _add("System.WorkItemType", type_to_tracker(ticket["ticket_type"])),
            _add("System.TeamProject", project),
            _add("System.AreaPath", project),
            _add("System.IterationPath", project),
        ]
        await self._patch_work_item(int(ticket["work_item_id"]), operations)

    async def update_work_item_operator(
        self, work_item_id: int, operator: Mapping[str, Any] | None
    ) -> None:
        if operator is None:
            operations = [{"op": "remove", "path": "/fields/System.AssignedTo"}]
        else:
            operations = [_add("System.AssignedTo", format_identity(operator))]
        await self._patch_work_item(work_item_id, operations)

    async def add_comment(
        self,
        work_item_id: int,
        *,
        project: str,
        author_name: str,
        author_email: str,
        message: str,
    ) -> None:
        await self._request(
            "POST",
            f"/{quote(project)}/_apis/wit/workItems/{work_item_id}/comments",
            params={
                "format": "html",
                "api-version": f"{self._settings.azure_devops_api_version}-preview.4",
            },
            json={"text": format_comment(author_name, author_email, message)},
            content_type="application/json",
        )

    async def add_attachment(self, work_item_id: int, *, project: str, path: Path) -> str:
        """Upload ``path`` and link it to the work item; returns the attachment URL."""

        uploaded = await self._request(
            "POST",
            f"/{quote(project)}/_apis/wit/attachments",
            params={"fileName": path.name, "uploadType": "Simple"},
            content=path.read_bytes(),
            content_type="application/octet-stream",
        )
        url = (uploaded or {}).get("url")
        if not url:
            raise TrackerAPIError("Azure DevOps did not return an attachment url")
        await self._patch_work_item(
            work_item_id,
            [{"op": "add", "path": "/relations/-", "value": {"rel": "AttachedFile", "url": url}}],
        )
        return url

    async def delete_work_item(self, work_item_id: int) -> None:
        await self._request("DELETE", f"/_apis/wit/workitems/{work_item_id}")
        log_info("Work item deleted", work_item_id=work_item_id)
