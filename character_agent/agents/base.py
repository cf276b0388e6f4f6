"""Step Processor 依赖的协作者接口"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from character_agent.schemas.character import CharacterRecord
from character_agent.schemas.step import LogEntry, Step, StepUpdateResult, SubscriptionOptions


@runtime_checkable
class StepStoreProtocol(Protocol):
    """协调网络的步骤读写接口（StepStoreClient 或测试替身）"""

    async def get_step(self, step_id: str) -> Step:
        ...

    async def update_step(self, did: str, step: dict[str, Any]) -> StepUpdateResult:
        ...

    async def log_task(self, entry: LogEntry) -> None:
        ...


@runtime_checkable
class ExtractorProtocol(Protocol):
    async def extract_characters(self, script: str) -> list[CharacterRecord]:
        """剧本 -> 角色列表；失败时抛出异常"""
        ...


@runtime_checkable
class EventStoreProtocol(StepStoreProtocol, Protocol):
    """Runtime 需要的连接与订阅接口"""

    @property
    def is_logged_in(self) -> bool:
        ...

    async def connect(self) -> None:
        ...

    async def subscribe(self, callback: Callable[[Any], Awaitable[None]], options: SubscriptionOptions) -> None:
        ...

    async def wait_closed(self) -> None:
        """订阅彻底结束（无法重连或已断开）后返回"""
        ...

    async def disconnect(self) -> None:
        ...
