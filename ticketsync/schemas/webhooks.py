from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class WorkItemResource(BaseModel):
    """The ``resource`` section of an Azure DevOps service hook payload."""

    id: Optional[int] = None
    work_item_id: Optional[int] = Field(default=None, alias="workItemId")
    fields: dict[str, Any] = Field(default_factory=dict)
    revision: Optional[dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WorkItemEvent(BaseModel):
    event_type: str = Field(default="", alias="eventType")
    resource: WorkItemResource

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WebhookOutcome(BaseModel):
    status: str
    ticket_id: Optional[int] = None
    detail: Optional[str] = None
