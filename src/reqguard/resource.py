from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from reqguard.config import ActionPolicy, ResourceConfig, UnknownActionError
from reqguard.telemetry import Telemetry
from reqguard.tracker import RequestTracker
from reqguard.wrapper import Handle, RequestWrapper, TransportCall

TransportBinder = Callable[[str, ActionPolicy], TransportCall]


@dataclass(frozen=True)
class BoundAction:
    key: str
    policy: ActionPolicy
    transport: TransportCall
    wrapper: RequestWrapper

    def __call__(self, *args: Any, **kwargs: Any) -> Handle:
        return self.wrapper.invoke(self.key, self.policy, self.transport, *args, **kwargs)


class Resource:
    """A configured action set with its own request tracker.

    ``bind_transport`` is called once per action at construction time and
    returns the transport function for that action. Each action is then
    reachable as an attribute (``resource.query(...)``) or through
    ``invoke``.
    """

    def __init__(
        self,
        config: ResourceConfig,
        bind_transport: TransportBinder,
        telemetry: Telemetry | None = None,
    ) -> None:
        self._config = config
        self._tracker = RequestTracker(name=config.name, telemetry=telemetry)
        self._wrapper = RequestWrapper(tracker=self._tracker, telemetry=telemetry)
        self._actions: dict[str, BoundAction] = {
            key: BoundAction(
                key=key,
                policy=policy,
                transport=bind_transport(key, policy),
                wrapper=self._wrapper,
            )
            for key, policy in config.actions.items()
        }

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> ResourceConfig:
        return self._config

    @property
    def tracker(self) -> RequestTracker:
        return self._tracker

    @property
    def has_pending(self) -> bool:
        return self._tracker.has_pending

    @property
    def action_keys(self) -> tuple[str, ...]:
        return tuple(self._actions)

    def action(self, key: str) -> BoundAction:
        try:
            return self._actions[key]
        except KeyError:
            raise UnknownActionError(key) from None

    def invoke(self, key: str, *args: Any, **kwargs: Any) -> Handle:
        return self.action(key)(*args, **kwargs)

    def abort_all(self) -> int:
        return self._tracker.abort_all()

    def pending_counts(self) -> dict[str, int]:
        return self._tracker.pending_counts()

    def __getattr__(self, name: str) -> BoundAction:
        actions = self.__dict__.get("_actions")
        if actions is None or name not in actions:
            raise AttributeError(f"{type(self).__name__!r} has no action {name!r}")
        return actions[name]
