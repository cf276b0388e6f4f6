from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from character_agent.exceptions import MalformedNotificationError


class StepStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In_Progress"
    NOT_READY = "Not_Ready"
    COMPLETED = "Completed"
    FAILED = "Failed"


TaskLogLevel = Literal["info", "warning", "debug", "error"]


class Step(BaseModel):
    """协调网络中的一个步骤。

    未声明的字段原样保留，更新时与新字段合并后整体回写。
    """

    model_config = ConfigDict(extra="allow")

    task_id: str
    step_id: str
    did: str
    # 网络可能返回本枚举之外的状态，保留原始字符串（视为不可处理）
    step_status: StepStatus | str = Field(union_mode="left_to_right")
    input_query: str | None = None
    output: Any = None
    is_last: bool = False

    @property
    def is_pending(self) -> bool:
        return self.step_status == StepStatus.PENDING

    def status_label(self) -> str:
        if isinstance(self.step_status, StepStatus):
            return self.step_status.value
        return str(self.step_status)


class LogEntry(BaseModel):
    task_id: str
    level: TaskLogLevel = "info"
    message: str
    task_status: StepStatus | None = None
    step_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Notification(BaseModel):
    """step-updated 事件；只要求 step_id"""

    model_config = ConfigDict(extra="ignore")

    step_id: str = Field(min_length=1)
    task_id: str | None = None
    event: str | None = None

    @classmethod
    def from_raw(cls, raw: str | bytes | dict[str, Any]) -> "Notification":
        """解析并校验原始事件负载"""
        data: Any = raw
        if isinstance(data, (bytes, bytearray)):
            try:
                data = data.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise MalformedNotificationError(f"Notification is not valid UTF-8: {exc}") from exc
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as exc:
                raise MalformedNotificationError(f"Notification is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedNotificationError(
                f"Notification must be a JSON object, got {type(data).__name__}"
            )
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise MalformedNotificationError(
                "Notification is missing a valid step_id",
                details={"errors": exc.errors(include_url=False)},
            ) from exc


@dataclass(slots=True)
class StepUpdateResult:
    status: int
    data: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(slots=True)
class SubscriptionOptions:
    join_account_room: bool = False
    join_agent_rooms: list[str] = field(default_factory=list)
    subscribe_event_types: list[str] = field(default_factory=lambda: ["step-updated"])
    get_pending_events_on_subscribe: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "joinAccountRoom": self.join_account_room,
            "joinAgentRooms": list(self.join_agent_rooms),
            "subscribeEventTypes": list(self.subscribe_event_types),
            "getPendingEventsOnSubscribe": self.get_pending_events_on_subscribe,
        }
