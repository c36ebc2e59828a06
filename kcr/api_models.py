from __future__ import annotations

from pydantic import BaseModel, Field

from .conditions import Condition
from .models import Channel


class ConditionView(BaseModel):
    type: str
    status: str = Field(..., description="True|False|Unknown")
    reason: str = ""
    message: str = ""
    last_transition_time: str | None = None

    @classmethod
    def from_condition(cls, cond: Condition) -> "ConditionView":
        return cls(
            type=cond.type,
            status=cond.status.value,
            reason=cond.reason,
            message=cond.message,
            last_transition_time=cond.last_transition_time,
        )


class ChannelView(BaseModel):
    namespace: str
    name: str
    ready: str = Field(..., description="Status of the Ready condition")
    conditions: list[ConditionView] = []

    @classmethod
    def from_channel(cls, channel: Channel) -> "ChannelView":
        conditions = channel.status.conditions
        return cls(
            namespace=channel.namespace,
            name=channel.name,
            ready=conditions.ready.status.value,
            conditions=[ConditionView.from_condition(c) for c in conditions],
        )


class Accepted(BaseModel):
    queued: str = Field(..., description="Work item that was queued")


class EventView(BaseModel):
    id: int
    ts: str
    severity: str
    subject: str
    reason: str
    message: str
