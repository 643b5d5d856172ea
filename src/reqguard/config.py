from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any


class UnknownActionError(KeyError):
    """Raised when an action key is not part of a resource's action set."""


@dataclass(frozen=True)
class ActionPolicy:
    method: str = "get"
    is_array: bool = False
    # False admits one in-flight call per key; later calls are suppressed.
    allow_concurrent: bool = True
    # Suppressed handles settle with the outcome of the call they were suppressed by.
    follow_pending: bool = False
    options: Mapping[str, Any] = field(default_factory=dict)

    def empty_value(self) -> list[Any] | dict[str, Any]:
        return [] if self.is_array else {}


DEFAULT_ACTIONS: dict[str, ActionPolicy] = {
    "query": ActionPolicy(method="get", is_array=True),
    "create": ActionPolicy(method="post"),
    "update": ActionPolicy(method="put"),
    "delete": ActionPolicy(method="delete"),
}


@dataclass(frozen=True)
class ResourceConfig:
    name: str
    actions: Mapping[str, ActionPolicy] = field(
        default_factory=lambda: MappingProxyType(DEFAULT_ACTIONS.copy())
    )

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("resource name must be non-empty")
        if not isinstance(self.actions, MappingProxyType):
            object.__setattr__(self, "actions", MappingProxyType(dict(self.actions)))

    def policy_for(self, key: str) -> ActionPolicy:
        try:
            return self.actions[key]
        except KeyError:
            raise UnknownActionError(key) from None

    @classmethod
    def extend(
        cls,
        name: str,
        custom_actions: Mapping[str, ActionPolicy] | None = None,
        include: Iterable[str] | None = None,
        base_actions: Mapping[str, ActionPolicy] | None = None,
    ) -> "ResourceConfig":
        """Build a config from a base action set.

        Only the ``include`` keys of the base set are kept when given; custom
        actions are then overlaid, replacing base actions of the same key.
        """
        actions = dict(DEFAULT_ACTIONS if base_actions is None else base_actions)
        if include is not None:
            wanted = set(include)
            actions = {key: policy for key, policy in actions.items() if key in wanted}
        actions.update(custom_actions or {})
        return cls(name=name, actions=actions)
