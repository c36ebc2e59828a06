"""Channel status conditions as plain values.

A channel carries two leaf conditions that this controller owns (``Service`` and
``Dispatcher``) plus the ``Ready`` roll-up. Everything here is immutable so that
the stored status and a recomputed status can be compared with ``==``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from .runtime import utc_now


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Reason(str, Enum):
    DISPATCHER_SERVICE_RECONCILIATION_FAILED = "DispatcherServiceReconciliationFailed"
    DISPATCHER_DEPLOYMENT_RECONCILIATION_FAILED = "DispatcherDeploymentReconciliationFailed"
    DISPATCHER_DEPLOYMENT_FALSE = "DispatcherDeploymentFalse"
    DISPATCHER_DEPLOYMENT_UNKNOWN = "DispatcherDeploymentUnknown"
    DISPATCHER_DEPLOYMENT_UNAVAILABLE = "DispatcherDeploymentUnavailable"
    CHANNEL_SERVICE_RECONCILIATION_FAILED = "ChannelServiceReconciliationFailed"
    CHANNEL_DEPLOYMENT_RECONCILIATION_FAILED = "ChannelDeploymentReconciliationFailed"
    CHANNEL_STATUS_UPDATE_FAILED = "ChannelStatusUpdateFailed"
    DISPATCHER_SERVICE_CREATED = "DispatcherServiceCreated"
    DISPATCHER_DEPLOYMENT_CREATED = "DispatcherDeploymentCreated"


SERVICE = "Service"
DISPATCHER = "Dispatcher"
READY = "Ready"
LEAVES = (SERVICE, DISPATCHER)


_CONDITION_KEYS = frozenset({"type", "status", "reason", "message", "lastTransitionTime"})


def _reason(reason: str | Reason) -> str:
    return reason.value if isinstance(reason, Reason) else str(reason)


@dataclass(frozen=True)
class Condition:
    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    last_transition_time: str | None = field(default=None, compare=False)
    # keys this controller does not model (e.g. severity), written back untouched
    extra: tuple[tuple[str, Any], ...] = field(default=(), compare=False)

    @property
    def is_true(self) -> bool:
        return self.status is ConditionStatus.TRUE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        try:
            status = ConditionStatus(data.get("status", "Unknown"))
        except ValueError:
            status = ConditionStatus.UNKNOWN
        return cls(
            type=str(data["type"]),
            status=status,
            reason=str(data.get("reason") or ""),
            message=str(data.get("message") or ""),
            last_transition_time=data.get("lastTransitionTime"),
            extra=tuple(sorted((k, v) for k, v in data.items() if k not in _CONDITION_KEYS)),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "status": self.status.value}
        out.update(self.extra)
        if self.reason:
            out["reason"] = self.reason
        if self.message:
            out["message"] = self.message
        if self.last_transition_time:
            out["lastTransitionTime"] = self.last_transition_time
        return out


def roll_up(conditions: Iterable[Condition]) -> Condition:
    """Derive Ready from the leaves: True iff every leaf is True."""
    by_type = {c.type: c for c in conditions}
    leaves = [by_type.get(t) for t in LEAVES]
    for leaf in leaves:
        if leaf is not None and leaf.status is ConditionStatus.FALSE:
            return Condition(READY, ConditionStatus.FALSE, leaf.reason, leaf.message)
    if all(leaf is not None and leaf.is_true for leaf in leaves):
        return Condition(READY, ConditionStatus.TRUE)
    for leaf in leaves:
        if leaf is not None and leaf.status is ConditionStatus.UNKNOWN and (leaf.reason or leaf.message):
            return Condition(READY, ConditionStatus.UNKNOWN, leaf.reason, leaf.message)
    return Condition(READY, ConditionStatus.UNKNOWN)


@dataclass(frozen=True)
class ConditionSet:
    """Conditions kept sorted by type, so equality does not depend on input order."""

    conditions: tuple[Condition, ...] = ()

    def __post_init__(self) -> None:
        seen: dict[str, Condition] = {}
        for c in self.conditions:
            seen[c.type] = c
        object.__setattr__(self, "conditions", tuple(sorted(seen.values(), key=lambda c: c.type)))

    @classmethod
    def of(cls, conditions: Iterable[Condition]) -> "ConditionSet":
        return cls(tuple(conditions))._with_ready()

    def get(self, ctype: str) -> Condition | None:
        for c in self.conditions:
            if c.type == ctype:
                return c
        return None

    def __iter__(self):
        return iter(self.conditions)

    @property
    def ready(self) -> Condition:
        return self.get(READY) or roll_up(self.conditions)

    def set(self, cond: Condition) -> "ConditionSet":
        if cond.type == READY:
            raise ValueError("Ready is derived from the leaf conditions and cannot be set")
        return self._replace(cond)._with_ready()

    def mark_true(self, ctype: str) -> "ConditionSet":
        return self.set(Condition(ctype, ConditionStatus.TRUE))

    def mark_false(self, ctype: str, reason: str, message: str) -> "ConditionSet":
        return self.set(Condition(ctype, ConditionStatus.FALSE, _reason(reason), message))

    def mark_unknown(self, ctype: str, reason: str, message: str) -> "ConditionSet":
        return self.set(Condition(ctype, ConditionStatus.UNKNOWN, _reason(reason), message))

    def _replace(self, cond: Condition) -> "ConditionSet":
        old = self.get(cond.type)
        if old == cond:
            # keep the original transition time
            return self
        stamped = Condition(cond.type, cond.status, cond.reason, cond.message, utc_now(), cond.extra)
        return ConditionSet(tuple(c for c in self.conditions if c.type != cond.type) + (stamped,))

    def _with_ready(self) -> "ConditionSet":
        return self._replace(roll_up(self.conditions))


@dataclass(frozen=True)
class ChannelStatus:
    conditions: ConditionSet = field(default_factory=ConditionSet)
    # Fields owned by the primary channel controller (address, observedGeneration, ...)
    extra: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ChannelStatus":
        data = dict(data or {})
        raw_conditions = data.pop("conditions", None) or []
        conditions = ConditionSet(tuple(Condition.from_dict(c) for c in raw_conditions if c.get("type")))
        return cls(conditions=conditions, extra=tuple(sorted(data.items())))

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.extra)
        out["conditions"] = [c.to_dict() for c in self.conditions]
        return out

    def with_conditions(self, conditions: ConditionSet) -> "ChannelStatus":
        return ChannelStatus(conditions=conditions, extra=self.extra)

    def with_leaves_from(self, other: "ChannelStatus") -> "ChannelStatus":
        """Copy this controller's leaf conditions from ``other``; leave the rest alone."""
        conditions = self.conditions
        for ctype in LEAVES:
            cond = other.conditions.get(ctype)
            if cond is not None:
                conditions = conditions.set(cond)
        return self.with_conditions(conditions)


def dispatcher_condition_from(deployment_status: Any, desired_replicas: int | None = None) -> Condition:
    """Derive the Dispatcher leaf from a Deployment's live status.

    ``deployment_status`` is a ``V1DeploymentStatus`` (or None for a deployment the
    apps controller has not observed yet).
    """
    if deployment_status is None:
        return Condition(DISPATCHER, ConditionStatus.TRUE)

    for cond in deployment_status.conditions or []:
        if cond.type != "Available":
            continue
        if cond.status == "True":
            return Condition(DISPATCHER, ConditionStatus.TRUE)
        if cond.status == "False":
            return Condition(
                DISPATCHER,
                ConditionStatus.FALSE,
                Reason.DISPATCHER_DEPLOYMENT_FALSE.value,
                f"The status of Dispatcher Deployment is False: {cond.reason or ''} : {cond.message or ''}",
            )
        return Condition(
            DISPATCHER,
            ConditionStatus.UNKNOWN,
            Reason.DISPATCHER_DEPLOYMENT_UNKNOWN.value,
            f"The status of Dispatcher Deployment is Unknown: {cond.reason or ''} : {cond.message or ''}",
        )

    observed = deployment_status.replicas
    if observed is None and deployment_status.available_replicas is None:
        return Condition(DISPATCHER, ConditionStatus.TRUE)

    desired = desired_replicas if desired_replicas is not None else (observed or 0)
    available = deployment_status.available_replicas or 0
    if available >= desired:
        return Condition(DISPATCHER, ConditionStatus.TRUE)
    return Condition(
        DISPATCHER,
        ConditionStatus.FALSE,
        Reason.DISPATCHER_DEPLOYMENT_UNAVAILABLE.value,
        f"{available} of {desired} replicas available",
    )
