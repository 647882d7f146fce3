"""Tagged outcomes shared by every guest-token workflow.

Previews resolve to Ready / AlreadyDecided / Blocked; decisions resolve to
DecisionApplied / AlreadyDecided / Blocked. Reason codes are data, never
exceptions, so callers match on the type and pick a message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Ready:
    data: dict[str, Any] = field(default_factory=dict)
    state: str = field(default="ready", init=False)


@dataclass(frozen=True)
class AlreadyDecided:
    data: dict[str, Any] = field(default_factory=dict)
    state: str = field(default="already_decided", init=False)


@dataclass(frozen=True)
class Blocked:
    reason: str
    data: dict[str, Any] = field(default_factory=dict)
    state: str = field(default="blocked", init=False)


@dataclass(frozen=True)
class DecisionApplied:
    data: dict[str, Any] = field(default_factory=dict)
    state: str = field(default="decision_applied", init=False)


@dataclass(frozen=True)
class CheckoutStarted:
    """The guest is being sent to a hosted checkout; nothing is decided yet."""

    url: str
    data: dict[str, Any] = field(default_factory=dict)
    state: str = field(default="checkout_started", init=False)


PreviewResult = Union[Ready, AlreadyDecided, Blocked]
DecisionResult = Union[DecisionApplied, AlreadyDecided, Blocked]
CheckoutResult = Union[CheckoutStarted, AlreadyDecided, Blocked]


def to_payload(result: PreviewResult | DecisionResult | CheckoutResult) -> dict[str, Any]:
    payload: dict[str, Any] = {"state": result.state}
    if isinstance(result, Blocked):
        payload["reason"] = result.reason
    payload.update(result.data)
    return payload
