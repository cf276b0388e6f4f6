"""Agent Runtime：组装协作者、订阅事件并分发给 StepProcessor"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from character_agent.agents.base import EventStoreProtocol
from character_agent.agents.character import CharacterExtractor
from character_agent.agents.step_processor import StepProcessor
from character_agent.config import Settings
from character_agent.exceptions import (
    AuthenticationError,
    ConfigurationError,
    MalformedNotificationError,
    SubscriptionError,
)
from character_agent.schemas.step import Notification, SubscriptionOptions
from character_agent.services.llm import LLMService
from character_agent.services.step_store import StepStoreClient
from character_agent.services.task_manager import TaskManager

logger = logging.getLogger(__name__)

STEP_UPDATED_EVENT = "step-updated"

# 队列中的控制标记
_STOP = object()
_CHANNEL_LOST = object()


class AgentRuntime:
    """进程级的组合根。

    订阅回调只负责把原始事件放入队列；单个分发循环从队列取出事件，
    为每个通知启动一个独立的处理任务（不同步骤之间不串行化）。
    """

    def __init__(
        self,
        *,
        settings: Settings,
        store: EventStoreProtocol,
        processor: StepProcessor,
        tasks: TaskManager | None = None,
    ):
        self.settings = settings
        self.store = store
        self.processor = processor
        self.tasks = tasks or TaskManager()
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    @classmethod
    def from_settings(cls, settings: Settings) -> "AgentRuntime":
        missing = settings.missing_runtime_settings()
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                details={"missing": missing},
            )
        store = StepStoreClient(settings)
        extractor = CharacterExtractor(LLMService(settings), settings)
        return cls(settings=settings, store=store, processor=StepProcessor(store, extractor))

    def subscription_options(self) -> SubscriptionOptions:
        return SubscriptionOptions(
            join_account_room=False,
            join_agent_rooms=[self.settings.agent_did] if self.settings.agent_did else [],
            subscribe_event_types=[STEP_UPDATED_EVENT],
            get_pending_events_on_subscribe=False,
        )

    async def on_event(self, raw: Any) -> None:
        """订阅回调：只入队，不做处理"""
        await self._queue.put(raw)

    async def start(self) -> None:
        logger.info("Initializing connection to %s network...", self.settings.nvm_environment)
        await self.store.connect()
        if not self.store.is_logged_in:
            raise AuthenticationError("Failed to login to the coordination network")
        logger.info("Connected to network: %s", self.settings.nvm_environment)

        await self.store.subscribe(self.on_event, self.subscription_options())
        logger.info("Waiting for events!")

    def _dispatch(self, raw: Any) -> None:
        try:
            step_id = Notification.from_raw(raw).step_id
        except MalformedNotificationError:
            # 交给 processor 记录
            step_id = None

        if step_id is not None and self.tasks.is_running(step_id):
            logger.warning("Step %s is already being processed. Dropping duplicate event", step_id)
            return

        task = asyncio.create_task(self.processor.handle_notification(raw))
        self.tasks.register(step_id, task)

    async def dispatch_forever(self) -> None:
        """分发循环；stop() 后返回，订阅丢失时抛出 SubscriptionError"""
        while True:
            raw = await self._queue.get()
            if raw is _STOP:
                break
            if raw is _CHANNEL_LOST:
                raise SubscriptionError("Event subscription lost")
            self._dispatch(raw)

    async def _watch_channel(self) -> None:
        # 客户端会自行重连；wait_closed 返回说明订阅已无法恢复
        await self.store.wait_closed()
        logger.error("Event subscription ended without stop()")
        await self._queue.put(_CHANNEL_LOST)

    async def run_forever(self) -> None:
        """启动并持续分发；启动失败时尽力断开后向上抛出"""
        try:
            await self.start()
        except Exception:
            await self.shutdown()
            raise

        watcher = asyncio.create_task(self._watch_channel())
        try:
            await self.dispatch_forever()
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)
            await self.shutdown()

    async def stop(self) -> None:
        await self._queue.put(_STOP)

    async def shutdown(self) -> None:
        """等待进行中的处理结束，然后断开订阅"""
        await self.tasks.wait_all()
        try:
            await self.store.disconnect()
        except Exception as exc:
            logger.warning("Error while disconnecting: %s", exc)
