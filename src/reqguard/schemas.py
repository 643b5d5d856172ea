from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from reqguard.config import ActionPolicy, ResourceConfig


class ActionDefinition(BaseModel):
    """One action as written in a plain mapping.

    Accepts the camelCase keys of browser-side resource definitions
    (``isArray``, ``allowMulti``). Keys the core does not know about, such as
    ``url`` or ``headers``, are kept and passed to the transport as options.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    method: str = Field(default="get", min_length=1)
    is_array: bool = Field(default=False, alias="isArray")
    # An absent or null allowMulti admits concurrent calls.
    allow_concurrent: bool | None = Field(default=None, alias="allowMulti")
    follow_pending: bool = Field(default=False, alias="followPending")

    def to_policy(self) -> ActionPolicy:
        return ActionPolicy(
            method=self.method.lower(),
            is_array=self.is_array,
            allow_concurrent=self.allow_concurrent is not False,
            follow_pending=self.follow_pending,
            options=dict(self.model_extra or {}),
        )


class ResourceDefinition(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    actions: dict[str, ActionDefinition] = Field(default_factory=dict)
    include: list[str] | None = None

    def to_config(self) -> ResourceConfig:
        return ResourceConfig.extend(
            name=self.name,
            custom_actions={key: action.to_policy() for key, action in self.actions.items()},
            include=self.include,
        )


def load_resource_config(raw: Mapping[str, Any]) -> ResourceConfig:
    return ResourceDefinition.model_validate(raw).to_config()


class ResourceHealth(BaseModel):
    name: str
    has_pending: bool
    pending: dict[str, int]


class HealthResponse(BaseModel):
    status: str
    resources: list[ResourceHealth]


class AbortAllResponse(BaseModel):
    name: str
    aborted: int
