from __future__ import annotations

from collections.abc import Sequence

from reqguard.config import ActionPolicy
from reqguard.pending import PendingEntry


def should_suppress(policy: ActionPolicy, pending_for_key: Sequence[PendingEntry]) -> bool:
    if policy.allow_concurrent:
        return False
    return len(pending_for_key) > 0
